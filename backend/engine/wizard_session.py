"""
Wizard Session Module.

Immutable state machine over the wizard steps. Every operation returns a new
session; the receiver is never modified. The session does not validate on
its own: callers feed validity verdicts in through ``mark_valid`` and only
call ``next_step`` once the current step is known to be valid.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple
import logging

from engine.steps import STEP_ORDER, StepData, StepId, empty_step_data

logger = logging.getLogger(__name__)


def _freeze(data: Mapping[StepId, StepData]) -> Mapping[StepId, StepData]:
    return MappingProxyType(dict(data))


@dataclass(frozen=True)
class WizardSession:
    """
    Snapshot of one in-progress wizard.

    Invariants:
    - ``current`` is a member of ``order``
    - ``completed`` is a subset of ``order``
    - ``data`` holds a bag for every step in ``order``
    """

    order: Tuple[StepId, ...] = STEP_ORDER
    current: StepId = STEP_ORDER[0]
    completed: FrozenSet[StepId] = frozenset()
    data: Mapping[StepId, StepData] = field(
        default_factory=lambda: _freeze({step: empty_step_data(step) for step in STEP_ORDER})
    )

    def __post_init__(self):
        if not self.order:
            raise ValueError("Wizard needs at least one step")
        if len(set(self.order)) != len(self.order):
            raise ValueError("Wizard step order contains duplicates")
        if self.current not in self.order:
            raise ValueError(f"Current step {self.current!r} is not part of the step order")
        if not self.completed <= frozenset(self.order):
            raise ValueError("Completed steps must be part of the step order")

    @classmethod
    def start(cls, order: Tuple[StepId, ...] = STEP_ORDER) -> "WizardSession":
        """Fresh session positioned on the first step."""
        return cls(
            order=tuple(order),
            current=order[0],
            completed=frozenset(),
            data=_freeze({step: empty_step_data(step) for step in order}),
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def index(self) -> int:
        return self.order.index(self.current)

    @property
    def first_step(self) -> StepId:
        return self.order[0]

    @property
    def last_step(self) -> StepId:
        return self.order[-1]

    @property
    def is_first_step(self) -> bool:
        return self.current == self.first_step

    @property
    def is_last_step(self) -> bool:
        return self.current == self.last_step

    @property
    def can_proceed(self) -> bool:
        """Whether the current step has been reported valid."""
        return self.current in self.completed

    @property
    def is_complete(self) -> bool:
        """Terminal condition: on the last step with every earlier step completed."""
        return self.is_last_step and frozenset(self.order[:-1]) <= self.completed

    @property
    def progress(self) -> int:
        """Completed steps as a rounded percentage."""
        return int(round(len(self.completed) / len(self.order) * 100))

    def step_data(self, step: StepId) -> StepData:
        return self.data[step]

    def all_data(self) -> Dict[StepId, StepData]:
        return dict(self.data)

    def can_go_to(self, step: StepId) -> bool:
        return step in self.order and (step == self.first_step or step in self.completed)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def next_step(self) -> "WizardSession":
        """
        Advance to the following step and mark the step being left completed.

        Returns the session unchanged when already on the last step.
        """
        if self.is_last_step:
            return self
        return replace(
            self,
            current=self.order[self.index + 1],
            completed=self.completed | {self.current},
        )

    def prev_step(self) -> "WizardSession":
        """Move back one step. ``completed`` is left as is."""
        if self.is_first_step:
            return self
        return replace(self, current=self.order[self.index - 1])

    def go_to(self, step: StepId) -> "WizardSession":
        """Jump to ``step`` when it is the first step or already completed."""
        if not self.can_go_to(step):
            logger.debug("Refusing jump to %s; completed=%s", step, sorted(s.value for s in self.completed))
            return self
        return replace(self, current=step)

    def update_step_data(self, step: StepId, partial: Mapping[str, Any]) -> "WizardSession":
        """
        Shallow-merge ``partial`` into the data bag of ``step``.

        Raises:
            pydantic.ValidationError: if ``partial`` names a field the step does not own
        """
        data = dict(self.data)
        data[step] = data[step].merged(partial)
        return replace(self, data=_freeze(data))

    def mark_valid(self, step: StepId, is_valid: bool) -> "WizardSession":
        """Add ``step`` to or remove it from ``completed``."""
        if step not in self.order:
            raise ValueError(f"Unknown wizard step: {step!r}")
        if is_valid:
            if step in self.completed:
                return self
            return replace(self, completed=self.completed | {step})
        if step not in self.completed:
            return self
        return replace(self, completed=self.completed - {step})

    def reset(self) -> "WizardSession":
        """First step, nothing completed, empty data."""
        return WizardSession.start(self.order)

    def seed(self, initial_data: Mapping[StepId, Optional[Mapping[str, Any]]]) -> "WizardSession":
        """
        Bulk-load step data for editing an existing record.

        Every step is marked completed so the user can move freely between
        steps of a record that was valid when it was saved.
        """
        data = {step: empty_step_data(step) for step in self.order}
        for step, values in initial_data.items():
            if values:
                data[step] = data[step].merged(values)
        return replace(
            self,
            current=self.first_step,
            completed=frozenset(self.order),
            data=_freeze(data),
        )
