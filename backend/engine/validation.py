"""
Declarative Validation Engine.

Evaluates a rule schema against a bag of field values and returns one error
message per field. Rules are pure functions of (value, params); the first
failing rule of a field wins and later rules of that field are not run.
The engine never raises: unknown rule kinds are skipped. Rule kinds are
snake_case; the camelCase spellings in RULE_ALIASES resolve to the same rules.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import math
import re

logger = logging.getLogger(__name__)


class RuleKind(str, Enum):
    """Built-in rule kinds."""
    REQUIRED = "required"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    PATTERN = "pattern"
    EMAIL = "email"
    NUMBER = "number"
    MIN = "min"
    MAX = "max"
    PERCENTAGE = "percentage"
    SYMBOL_FORMAT = "symbol_format"
    MIN_ITEMS = "min_items"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Rule:
    """A single validation rule attached to a field."""
    kind: Union[RuleKind, str]
    params: Any = None
    message: Optional[str] = None


ValidationSchema = Mapping[str, Sequence[Rule]]
ValidationResult = Dict[str, Optional[str]]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SYMBOL_RE = re.compile(r"^[A-Z]{2,10}-[A-Z]{2,10}$", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_leading_number(value: Any) -> Optional[float]:
    """
    Lenient numeric coercion used by the range rules.

    Numbers pass through, strings are read up to the first non-numeric
    character ("12abc" -> 12.0). Anything else, including booleans, yields None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if isinstance(value, str):
        match = _LEADING_NUMBER_RE.match(value.strip())
        if match:
            return float(match.group(0))
    return None


def _is_strict_number(value: Any) -> bool:
    """True when the whole value reads as a finite or infinite number."""
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return not math.isnan(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text or _parse_leading_number(text) is None:
            return False
        try:
            return not math.isnan(float(text))
        except ValueError:
            return False
    return False


# ============================================================================
# Rule implementations: (value, params, message) -> error | None
# ============================================================================

def _required(value: Any, _params: Any, message: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return message or "This field is required"
    return None


def _min_length(value: Any, minimum: Any, message: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and len(value) < minimum:
        return message or f"Must be at least {minimum} characters"
    return None


def _max_length(value: Any, maximum: Any, message: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and len(value) > maximum:
        return message or f"Must be no more than {maximum} characters"
    return None


def _pattern(value: Any, pattern: Any, message: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    regex = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
    if not regex.search(value):
        return message or "Invalid format"
    return None


def _email(value: Any, _params: Any, message: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and not _EMAIL_RE.match(value):
        return message or "Invalid email address"
    return None


def _number(value: Any, _params: Any, message: Optional[str]) -> Optional[str]:
    if value != "" and not _is_strict_number(value):
        return message or "Must be a valid number"
    return None


def _min(value: Any, minimum: Any, message: Optional[str]) -> Optional[str]:
    number = _parse_leading_number(value)
    if number is not None and number < minimum:
        return message or f"Must be at least {minimum}"
    return None


def _max(value: Any, maximum: Any, message: Optional[str]) -> Optional[str]:
    number = _parse_leading_number(value)
    if number is not None and number > maximum:
        return message or f"Must be no more than {maximum}"
    return None


def _percentage(value: Any, _params: Any, message: Optional[str]) -> Optional[str]:
    number = _parse_leading_number(value)
    if number is not None and (number < 0 or number > 100):
        return message or "Must be a valid percentage (0-100)"
    return None


def _symbol_format(value: Any, _params: Any, message: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and not _SYMBOL_RE.match(value):
        return message or "Invalid symbol format"
    return None


def _min_items(value: Any, minimum: Any, message: Optional[str]) -> Optional[str]:
    minimum = 1 if minimum is None else minimum
    size = len(value) if isinstance(value, (list, tuple, set, frozenset)) else 0
    if size < minimum:
        return message or f"Select at least {minimum} item(s)"
    return None


def _custom(value: Any, predicate: Any, message: Optional[str]) -> Optional[str]:
    if not callable(predicate):
        return None
    result = predicate(value)
    if result is not True:
        if message:
            return message
        if isinstance(result, str) and result:
            return result
        return "Invalid value"
    return None


RULES: Dict[str, Callable[[Any, Any, Optional[str]], Optional[str]]] = {
    RuleKind.REQUIRED.value: _required,
    RuleKind.MIN_LENGTH.value: _min_length,
    RuleKind.MAX_LENGTH.value: _max_length,
    RuleKind.PATTERN.value: _pattern,
    RuleKind.EMAIL.value: _email,
    RuleKind.NUMBER.value: _number,
    RuleKind.MIN.value: _min,
    RuleKind.MAX.value: _max,
    RuleKind.PERCENTAGE.value: _percentage,
    RuleKind.SYMBOL_FORMAT.value: _symbol_format,
    RuleKind.MIN_ITEMS.value: _min_items,
    RuleKind.CUSTOM.value: _custom,
}

# camelCase spellings used by form schemas on the client side
RULE_ALIASES: Dict[str, str] = {
    "minLength": RuleKind.MIN_LENGTH.value,
    "maxLength": RuleKind.MAX_LENGTH.value,
    "symbolFormat": RuleKind.SYMBOL_FORMAT.value,
    "minItems": RuleKind.MIN_ITEMS.value,
}


def _rule_key(kind: Union[RuleKind, str]) -> str:
    if isinstance(kind, RuleKind):
        return kind.value
    return RULE_ALIASES.get(str(kind), str(kind))


def validate_field(rules: Sequence[Rule], value: Any) -> Optional[str]:
    """
    Run a field's rules in declared order.

    Args:
        rules: Rules attached to the field
        value: Current field value

    Returns:
        The first failure message, or None when every rule passes
    """
    for rule in rules:
        check = RULES.get(_rule_key(rule.kind))
        if check is None:
            logger.debug("Skipping unknown validation rule kind %r", rule.kind)
            continue
        try:
            error = check(value, rule.params, rule.message)
        except Exception as exc:
            # A rule that cannot be evaluated behaves like an unknown rule.
            logger.warning("Skipping malformed rule %r: %s", rule.kind, exc)
            continue
        if error:
            return error
    return None


def validate(schema: ValidationSchema, values: Mapping[str, Any]) -> ValidationResult:
    """
    Validate a value bag against a schema.

    Every field named in the schema gets an entry: the first failing rule's
    message, or None. Fields missing from ``values`` are validated as None.

    Args:
        schema: Field name -> ordered rules
        values: Field name -> current value

    Returns:
        Field name -> error message or None
    """
    return {field: validate_field(rules, values.get(field)) for field, rules in schema.items()}


def is_valid(results: Mapping[str, Optional[str]]) -> bool:
    """A form is valid iff no field carries an error."""
    return all(error is None for error in results.values())


def error_summary(results: Mapping[str, Optional[str]]) -> List[Tuple[str, str]]:
    """List (field, message) pairs for the failing fields, in schema order."""
    return [(field, error) for field, error in results.items() if error is not None]
