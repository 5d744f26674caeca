"""
Wizard step catalogue.

Defines the closed set of wizard steps, the data shape each step owns and the
validation schema gating navigation out of each step.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type
from pydantic import BaseModel, ConfigDict, Field, field_validator

from api.models import Indicator, IndicatorSide
from engine.validation import Rule, RuleKind, ValidationSchema


class StepId(str, Enum):
    """Wizard steps, declared in navigation order."""
    SYMBOL = "symbol"
    CONFIGURATION = "configuration"
    REVIEW = "review"


STEP_ORDER: Tuple[StepId, ...] = (StepId.SYMBOL, StepId.CONFIGURATION, StepId.REVIEW)

STEP_TITLES: Dict[StepId, str] = {
    StepId.SYMBOL: "Symbol Selection",
    StepId.CONFIGURATION: "Strategy Configuration & Indicators",
    StepId.REVIEW: "Review & Create",
}


class StepData(BaseModel):
    """Base class for per-step data bags. Unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    def merged(self, partial: Mapping[str, Any]) -> "StepData":
        """Return a copy with ``partial`` shallow-merged over the current fields."""
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(partial)
        return type(self).model_validate(values)

    def as_values(self) -> Dict[str, Any]:
        """Field bag handed to the validation engine."""
        return {name: getattr(self, name) for name in type(self).model_fields}


class SymbolStepData(StepData):
    """Exchange API key and the selected trading symbol."""
    api_key: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    base_asset: Optional[str] = None
    quote_asset: Optional[str] = None
    is_custom: bool = False


class ConfigurationStepData(StepData):
    """
    Sizing parameters and buy/sell indicator sets.

    Sizing fields are shared by both sides; quantity conditions are per side.
    Untouched form fields hold an empty string.
    """
    operation_percentage: Any = ""
    max_allocated_value: Any = ""
    simultaneous_operations: Any = ""
    interval_between_operations: Any = ""
    buy_quantity_condition: Any = ""
    sell_quantity_condition: Any = ""
    buy_indicators: Tuple[Indicator, ...] = ()
    sell_indicators: Tuple[Indicator, ...] = ()

    def indicators_for(self, side: IndicatorSide) -> Tuple[Indicator, ...]:
        return self.buy_indicators if side == IndicatorSide.BUY else self.sell_indicators

    def all_indicators(self) -> List[Indicator]:
        """Buy indicators followed by sell indicators."""
        return [*self.buy_indicators, *self.sell_indicators]


class ReviewStepData(StepData):
    """Strategy name and description entered on the review step."""
    strategy_name: str = ""
    strategy_description: str = ""

    @field_validator("strategy_name", "strategy_description", mode="before")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v


STEP_DATA_MODELS: Dict[StepId, Type[StepData]] = {
    StepId.SYMBOL: SymbolStepData,
    StepId.CONFIGURATION: ConfigurationStepData,
    StepId.REVIEW: ReviewStepData,
}


def empty_step_data(step: StepId) -> StepData:
    """Fresh data bag for ``step``."""
    return STEP_DATA_MODELS[step]()


# ============================================================================
# Validation schemas
# ============================================================================

SYMBOL_STEP_SCHEMA: ValidationSchema = {
    "api_key": [Rule(RuleKind.REQUIRED, message="Please select an API key")],
    "symbol": [Rule(RuleKind.REQUIRED, message="Please select a trading symbol")],
}

CONFIGURATION_STEP_SCHEMA: ValidationSchema = {
    "operation_percentage": [
        Rule(RuleKind.NUMBER, message="Operation percentage must be a valid number"),
        Rule(RuleKind.PERCENTAGE, message="Operation percentage must be between 0 and 100"),
    ],
    "max_allocated_value": [
        Rule(RuleKind.NUMBER, message="Maximum allocated value must be a valid number"),
        Rule(RuleKind.MIN, 0, message="Maximum allocated value must be positive"),
    ],
    "simultaneous_operations": [
        Rule(RuleKind.NUMBER, message="Simultaneous operations must be a valid number"),
        Rule(RuleKind.MIN, 1, message="Allow at least one simultaneous operation"),
    ],
    "interval_between_operations": [
        Rule(RuleKind.NUMBER, message="Interval must be a valid number of minutes"),
        Rule(RuleKind.MIN, 0, message="Interval must be positive"),
    ],
    "buy_indicators": [Rule(RuleKind.MIN_ITEMS, 1, message="At least one buy indicator is required")],
    "sell_indicators": [Rule(RuleKind.MIN_ITEMS, 1, message="At least one sell indicator is required")],
}

REVIEW_STEP_SCHEMA: ValidationSchema = {
    "strategy_name": [
        Rule(RuleKind.REQUIRED, message="Strategy name is required"),
        Rule(RuleKind.MIN_LENGTH, 3, message="Strategy name must be at least 3 characters"),
        Rule(RuleKind.MAX_LENGTH, 100, message="Name must be no more than 100 characters"),
    ],
    "strategy_description": [
        Rule(RuleKind.MAX_LENGTH, 500, message="Description must be no more than 500 characters"),
    ],
}

STEP_SCHEMAS: Dict[StepId, ValidationSchema] = {
    StepId.SYMBOL: SYMBOL_STEP_SCHEMA,
    StepId.CONFIGURATION: CONFIGURATION_STEP_SCHEMA,
    StepId.REVIEW: REVIEW_STEP_SCHEMA,
}
