"""
Strategy Wizard Controller.

Composition root of the strategy wizard. Owns the immutable wizard session,
the symbol search box and the submit workflow:

1. Per-step validation results are fed into the session as validity verdicts
2. Navigation is gated on the verdict of the current step
3. Submit persists the instance (create or update), then reconciles the
   indicators that existed before editing with the ones the wizard ends with

Submission failures and partial indicator sync failures are reported
separately because the user has to react to them differently.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union, cast
import logging
import uuid

from api.models import ApiKey, Indicator, IndicatorSide, Sharing, StrategyInstance, StrategyTemplate, Symbol
from config.settings import get_settings
from engine.reconciliation import IndicatorReconciler, IndicatorSyncError, ReconciliationResult
from engine.steps import STEP_SCHEMAS, STEP_TITLES, ConfigurationStepData, StepId, SymbolStepData
from engine.validation import ValidationResult, is_valid, validate
from engine.wizard_session import WizardSession
from services.logging_service import correlation_scope
from services.strategy_backend import BackendError, StrategyBackendInterface
from services.strategy_payload import (
    build_create_payload,
    build_initial_data,
    build_update_payload,
    build_webhook_messages,
    desired_indicators,
)
from services.symbol_search import SymbolSearchController, backend_search_function

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str], Union[None, Awaitable[None]]]


class SubmitErrorKind(str, Enum):
    """Which stage of the submit workflow failed."""
    SUBMISSION = "submission"
    INDICATOR_SYNC = "indicator_sync"


_INDICATOR_FIELDS = {
    IndicatorSide.BUY: "buy_indicators",
    IndicatorSide.SELL: "sell_indicators",
}


class StrategyWizardController:
    """
    Drives one strategy wizard from first step to submit.

    Must be used from a running asyncio event loop (the symbol search
    schedules its debounce task on it).
    """

    def __init__(
        self,
        backend: StrategyBackendInterface,
        instance_to_edit: Optional[StrategyInstance] = None,
        on_complete: Optional[CompletionCallback] = None,
        search_debounce_seconds: Optional[float] = None,
        webhook_base_url: Optional[str] = None,
    ):
        """
        Initialize wizard controller.

        Args:
            backend: Backend receiving every wizard side effect
            instance_to_edit: Existing instance (edit mode) or None (create mode)
            on_complete: Called with the instance id after a successful submit
            search_debounce_seconds: Symbol search debounce (default: settings)
            webhook_base_url: Base URL for review step webhook messages (default: settings)
        """
        self.backend = backend
        self.instance_to_edit = instance_to_edit
        self.on_complete = on_complete
        self.webhook_base_url = webhook_base_url or get_settings().webhook_base_url
        self._search_debounce_seconds = search_debounce_seconds

        self.wizard_id = uuid.uuid4().hex[:12]
        self.reconciler = IndicatorReconciler(backend)
        self.session = WizardSession.start()
        self.step_errors: Dict[StepId, ValidationResult] = {}
        self.previous_indicators: List[Indicator] = []

        self.submitting = False
        self.submit_error: Optional[str] = None
        self.submit_error_kind: Optional[SubmitErrorKind] = None
        self.last_sync: Optional[ReconciliationResult] = None

        self.api_keys: List[ApiKey] = []
        self.strategy_templates: List[StrategyTemplate] = []
        self.sharings: List[Sharing] = []
        self.lookup_error: Optional[str] = None

        # Instance persisted by a submit whose indicator sync did not finish
        self._persisted: Optional[StrategyInstance] = None
        self.search = self._new_search()

    def _new_search(self) -> SymbolSearchController:
        return SymbolSearchController(
            backend_search_function(self.backend, self._selected_api_key),
            debounce_seconds=self._search_debounce_seconds,
        )

    def _selected_api_key(self) -> Optional[str]:
        return self._symbol_step().api_key

    def _symbol_step(self) -> SymbolStepData:
        return cast(SymbolStepData, self.session.step_data(StepId.SYMBOL))

    def _configuration_step(self) -> ConfigurationStepData:
        return cast(ConfigurationStepData, self.session.step_data(StepId.CONFIGURATION))

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @property
    def is_edit_mode(self) -> bool:
        return self.instance_to_edit is not None

    @property
    def current_step(self) -> StepId:
        return self.session.current

    @property
    def step_title(self) -> str:
        return STEP_TITLES[self.session.current]

    @property
    def can_proceed(self) -> bool:
        """Next/Submit is enabled only for a valid step and while idle."""
        return self.session.can_proceed and not self.submitting

    @property
    def progress(self) -> int:
        return self.session.progress

    def errors_for(self, step: Optional[StepId] = None) -> ValidationResult:
        return dict(self.step_errors.get(step or self.session.current, {}))

    def webhook_messages(self) -> Mapping[str, Dict[str, Any]]:
        return build_webhook_messages(self.session, self.webhook_base_url)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Prepare the wizard.

        In edit mode, loads the side strategies and indicators of the
        instance, seeds the session with them and remembers the indicators as
        the baseline for reconciliation.

        Raises:
            BackendError: if the edit-mode data cannot be loaded
        """
        instance = self.instance_to_edit
        if instance is None:
            return

        with correlation_scope(self.wizard_id):
            logger.info("Opening wizard for instance %s (%s)", instance.id, instance.name)
            try:
                buy = await self.backend.get_strategy_parameters(instance.strategy_buy) if instance.strategy_buy else None
                sell = await self.backend.get_strategy_parameters(instance.strategy_sell) if instance.strategy_sell else None
                indicators = await self.backend.get_indicators_by_instance(instance.id)
            except BackendError as exc:
                logger.error("Failed to load instance %s for editing: %s", instance.id, exc)
                raise

            self.previous_indicators = list(indicators)
            self.session = self.session.seed(build_initial_data(instance, buy, sell, indicators))
            self.step_errors = {}
            self.search.prime(instance.symbol)
            logger.info("Loaded %d indicators for instance %s", len(self.previous_indicators), instance.id)

    async def load_lookups(self) -> bool:
        """
        Fetch API keys, strategy templates and sharings for the step screens.

        A single registered API key is selected automatically.

        Returns:
            False if a lookup failed; the error is kept in ``lookup_error``
        """
        self.lookup_error = None
        try:
            self.api_keys = await self.backend.list_api_keys()
            self.strategy_templates = await self.backend.list_strategy_templates()
            self.sharings = await self.backend.list_sharings()
        except BackendError as exc:
            logger.warning("Loading wizard lookups failed: %s", exc)
            self.lookup_error = exc.detail or str(exc)
            return False

        if len(self.api_keys) == 1 and not self._selected_api_key():
            self.select_api_key(self.api_keys[0].api_key_id)
        return True

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def on_step_validation(self, step: StepId, valid: bool) -> None:
        """Record a validity verdict reported for ``step``."""
        self.session = self.session.mark_valid(step, valid)

    def validate_step(self, step: Optional[StepId] = None) -> ValidationResult:
        """Run the schema of ``step`` (default: current) and record the verdict."""
        step = step or self.session.current
        results = validate(STEP_SCHEMAS[step], self.session.step_data(step).as_values())
        self.step_errors[step] = results
        self.on_step_validation(step, is_valid(results))
        return results

    def update_step_data(self, partial: Mapping[str, Any], step: Optional[StepId] = None) -> ValidationResult:
        """
        Merge ``partial`` into a step's data and re-validate that step.

        Raises:
            pydantic.ValidationError: if ``partial`` names a field the step does not own
        """
        step = step or self.session.current
        self.session = self.session.update_step_data(step, partial)
        return self.validate_step(step)

    # ------------------------------------------------------------------
    # Symbol step
    # ------------------------------------------------------------------

    def select_api_key(self, api_key_id: Optional[str]) -> ValidationResult:
        """Pick the API key; switching keys drops the selected symbol."""
        partial: Dict[str, Any] = {"api_key": api_key_id or None}
        if api_key_id != self._symbol_step().api_key:
            self.search.clear_selection()
            partial.update(symbol=None, name=None, base_asset=None, quote_asset=None, is_custom=False)
        return self.update_step_data(partial, StepId.SYMBOL)

    def select_symbol(self, symbol: Symbol) -> ValidationResult:
        self.search.select_symbol(symbol)
        return self.update_step_data(
            {
                "symbol": symbol.symbol,
                "name": symbol.name,
                "base_asset": symbol.base_asset,
                "quote_asset": symbol.quote_asset,
                "is_custom": False,
            },
            StepId.SYMBOL,
        )

    def enter_custom_symbol(self, text: str) -> ValidationResult:
        """Typed text is both the search query and a custom symbol candidate."""
        self.search.update_query(text)
        value = text.strip().upper()
        return self.update_step_data(
            {
                "symbol": value or None,
                "name": None,
                "base_asset": None,
                "quote_asset": None,
                "is_custom": bool(value),
            },
            StepId.SYMBOL,
        )

    # ------------------------------------------------------------------
    # Configuration step
    # ------------------------------------------------------------------

    def add_indicator(self, side: IndicatorSide, name: str, mandatory: bool = False) -> Optional[Indicator]:
        """Append a new indicator to ``side``. Blank names are ignored."""
        if not name or not name.strip():
            return None
        indicator = Indicator(name=name, mandatory=mandatory, side=side, key=uuid.uuid4().hex)
        current = self._configuration_step().indicators_for(side)
        self.update_step_data({_INDICATOR_FIELDS[side]: (*current, indicator)}, StepId.CONFIGURATION)
        return indicator

    def remove_indicator(self, side: IndicatorSide, indicator_id: str) -> None:
        current = self._configuration_step().indicators_for(side)
        remaining = tuple(ind for ind in current if ind.id != indicator_id)
        self.update_step_data({_INDICATOR_FIELDS[side]: remaining}, StepId.CONFIGURATION)

    def toggle_mandatory(self, side: IndicatorSide, indicator_id: str) -> None:
        current = self._configuration_step().indicators_for(side)
        toggled = tuple(
            ind.model_copy(update={"mandatory": not ind.mandatory}) if ind.id == indicator_id else ind
            for ind in current
        )
        self.update_step_data({_INDICATOR_FIELDS[side]: toggled}, StepId.CONFIGURATION)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def handle_next(self) -> bool:
        """
        Advance past a valid step; on the last step this submits.

        Returns:
            True if the wizard moved forward or the submit succeeded
        """
        if not self.can_proceed:
            logger.debug("Next refused on step %s", self.session.current.value)
            return False
        if self.session.is_last_step:
            return await self.handle_submit()
        self.session = self.session.next_step()
        return True

    def handle_prev(self) -> bool:
        if self.submitting or self.session.is_first_step:
            return False
        self.session = self.session.prev_step()
        return True

    def go_to(self, step: StepId) -> bool:
        """Jump to a completed step (or the first one)."""
        if self.submitting or not self.session.can_go_to(step):
            return False
        self.session = self.session.go_to(step)
        return True

    # ------------------------------------------------------------------
    # Submit and close
    # ------------------------------------------------------------------

    def _fail(self, kind: SubmitErrorKind, message: str) -> bool:
        self.submit_error_kind = kind
        self.submit_error = message
        return False

    def _clear_error(self) -> None:
        self.submit_error = None
        self.submit_error_kind = None

    async def _persist(self) -> str:
        target = self.instance_to_edit or self._persisted
        if target is not None:
            return await self.backend.update_strategy_instance(build_update_payload(self.session, target))

        payload = build_create_payload(self.session)
        instance_id = await self.backend.create_strategy_instance(payload)
        self._persisted = StrategyInstance(
            id=instance_id,
            name=payload.name,
            symbol=payload.symbol,
            api_key_id=payload.api_key,
            strategy_uuid=payload.strategies[0].strategy if payload.strategies else None,
            description=payload.description,
        )
        return instance_id

    async def handle_submit(self) -> bool:
        """
        Persist the strategy and sync its indicators.

        Returns:
            True on success. On failure ``submit_error`` and
            ``submit_error_kind`` describe what went wrong and the session is
            kept so the user can retry.
        """
        if self.submitting:
            logger.warning("Submit already in progress for wizard %s", self.wizard_id)
            return False
        if not self.session.is_complete or not self.session.can_proceed:
            logger.debug("Submit refused: wizard %s is not complete", self.wizard_id)
            return False

        verb = "update" if self.is_edit_mode else "create"
        desired = desired_indicators(self.session)
        self.submitting = True
        self._clear_error()
        try:
            with correlation_scope(self.wizard_id):
                try:
                    instance_id = await self._persist()
                except Exception as exc:
                    logger.error("Failed to %s strategy: %s", verb, exc)
                    detail = exc.detail if isinstance(exc, BackendError) else str(exc)
                    return self._fail(SubmitErrorKind.SUBMISSION, detail or f"Failed to {verb} strategy")

                logger.info("Strategy instance %s %sd; syncing %d indicators", instance_id, verb, len(desired))
                try:
                    self.last_sync = await self.reconciler.reconcile(instance_id, self.previous_indicators, desired)
                except IndicatorSyncError as exc:
                    self.last_sync = exc.applied
                    self.previous_indicators = self._synced_indicators(exc.applied)
                    return self._fail(
                        SubmitErrorKind.INDICATOR_SYNC,
                        f"Strategy saved, but indicator sync is incomplete: {exc.cause}. "
                        "Please recheck the indicators.",
                    )
        finally:
            self.submitting = False

        self._finish()
        if self.on_complete is not None:
            outcome = self.on_complete(instance_id)
            if outcome is not None:
                await outcome
        return True

    def _synced_indicators(self, applied: ReconciliationResult) -> List[Indicator]:
        """Indicators attached to the instance after a partially applied sync."""
        removed = {ind.id for ind in applied.removed}
        return [ind for ind in self.previous_indicators if ind.id not in removed] + list(applied.added)

    def _finish(self) -> None:
        self.session = self.session.reset()
        self.step_errors = {}
        self.previous_indicators = []
        self._persisted = None
        self._clear_error()
        self.search.close()
        self.search = self._new_search()

    def handle_close(self) -> bool:
        """
        Discard the in-memory wizard.

        Returns:
            False while a submit is running (closing is disabled then)
        """
        if self.submitting:
            logger.info("Close ignored while wizard %s is submitting", self.wizard_id)
            return False
        self._finish()
        self.lookup_error = None
        self.last_sync = None
        return True
