"""
Wizard engine module.

Core components:
- Step catalogue and per-step validation schemas
- Declarative validation engine
- Immutable wizard session state machine
- Indicator reconciliation
"""

from engine.steps import StepId, STEP_ORDER, STEP_SCHEMAS
from engine.validation import Rule, RuleKind, validate, is_valid
from engine.wizard_session import WizardSession
from engine.reconciliation import (
    ReconciliationDelta,
    IndicatorReconciler,
    IndicatorSyncError,
    compute_delta,
)

__all__ = [
    "StepId",
    "STEP_ORDER",
    "STEP_SCHEMAS",
    "Rule",
    "RuleKind",
    "validate",
    "is_valid",
    "WizardSession",
    "ReconciliationDelta",
    "IndicatorReconciler",
    "IndicatorSyncError",
    "compute_delta",
]
