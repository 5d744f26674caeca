"""
Indicator Reconciliation Module.

Turns the indicators known before editing ("previous") into the indicators
the wizard ends with ("desired") using the smallest set of add/remove calls.
Identity is the indicator id only: an indicator present on both sides is
left alone even when its name or mandatory flag changed.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple
import logging

from api.models import AddIndicatorRequest, Indicator
from services.strategy_backend import StrategyBackendInterface

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationDelta:
    """Indicators to add and to remove, in their source order."""
    to_add: Tuple[Indicator, ...] = ()
    to_remove: Tuple[Indicator, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


@dataclass
class ReconciliationResult:
    """Calls that completed during an apply."""
    added: List[Indicator] = field(default_factory=list)
    removed: List[Indicator] = field(default_factory=list)


class IndicatorSyncError(Exception):
    """
    Raised when an add/remove call fails part way through an apply.

    Calls issued before the failure stay applied; nothing is rolled back.
    """

    def __init__(
        self,
        applied: ReconciliationResult,
        failed: Indicator,
        operation: str,
        cause: BaseException,
    ):
        self.applied = applied
        self.failed = failed
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"Indicator sync stopped at {operation} of {failed.name!r} ({failed.id}) "
            f"after {len(applied.added)} added and {len(applied.removed)} removed: {cause}"
        )


def compute_delta(previous: Iterable[Indicator], desired: Iterable[Indicator]) -> ReconciliationDelta:
    """
    Set difference by id in both directions.

    Args:
        previous: Indicators attached before editing
        desired: Indicators the wizard ends with

    Returns:
        ReconciliationDelta with desired-only indicators to add and
        previous-only indicators to remove
    """
    previous = list(previous)
    desired = list(desired)
    previous_ids = {indicator.id for indicator in previous}
    desired_ids = {indicator.id for indicator in desired}
    return ReconciliationDelta(
        to_add=tuple(indicator for indicator in desired if indicator.id not in previous_ids),
        to_remove=tuple(indicator for indicator in previous if indicator.id not in desired_ids),
    )


class IndicatorReconciler:
    """
    Applies reconciliation deltas against the backend.

    Calls are strictly sequential: each add/remove is awaited before the next
    starts, every add lands before the first remove.
    """

    def __init__(self, backend: StrategyBackendInterface):
        """
        Initialize reconciler.

        Args:
            backend: Backend receiving the add/remove calls
        """
        self.backend = backend

    async def apply(self, instance_id: str, delta: ReconciliationDelta) -> ReconciliationResult:
        """
        Apply ``delta`` to the indicators of ``instance_id``.

        Raises:
            IndicatorSyncError: on the first failing call
        """
        result = ReconciliationResult()
        if delta.is_empty:
            logger.info("Indicators of instance %s already in sync", instance_id)
            return result

        for indicator in delta.to_add:
            try:
                await self.backend.add_indicator(AddIndicatorRequest.for_indicator(indicator, instance_id))
            except Exception as exc:
                logger.error("Adding indicator %s to instance %s failed: %s", indicator.id, instance_id, exc)
                raise IndicatorSyncError(result, indicator, "add", exc) from exc
            result.added.append(indicator)

        for indicator in delta.to_remove:
            try:
                await self.backend.remove_indicator(indicator.id)
            except Exception as exc:
                logger.error("Removing indicator %s from instance %s failed: %s", indicator.id, instance_id, exc)
                raise IndicatorSyncError(result, indicator, "remove", exc) from exc
            result.removed.append(indicator)

        logger.info(
            "Synced indicators of instance %s: %d added, %d removed",
            instance_id,
            len(result.added),
            len(result.removed),
        )
        return result

    async def reconcile(
        self,
        instance_id: str,
        previous: Sequence[Indicator],
        desired: Sequence[Indicator],
    ) -> ReconciliationResult:
        """Compute the delta between ``previous`` and ``desired`` and apply it."""
        delta = compute_delta(previous, desired)
        logger.debug(
            "Indicator delta for instance %s: add=%s remove=%s",
            instance_id,
            [indicator.id for indicator in delta.to_add],
            [indicator.id for indicator in delta.to_remove],
        )
        return await self.apply(instance_id, delta)
