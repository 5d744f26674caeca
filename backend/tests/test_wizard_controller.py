"""
Tests for the strategy wizard controller.

Covers navigation gating, the create and edit submit flows against the paper
backend, and the two submit failure kinds.
"""

import asyncio

import pytest

from api.models import ApiKey, IndicatorSide, Symbol
from engine.steps import StepId
from services.paper_backend import PaperStrategyBackend
from services.strategy_backend import BackendError
from services.wizard_controller import StrategyWizardController, SubmitErrorKind

WEBHOOK_URL = "https://hooks.example.com/strategy"

BTC = Symbol(symbol="BTC-USDT", name="Bitcoin/Tether", base_asset="BTC", quote_asset="USDT", type="crypto")

SIZING = {
    "operation_percentage": "10",
    "max_allocated_value": "1000",
    "simultaneous_operations": "2",
    "interval_between_operations": "15",
    "buy_quantity_condition": "1",
    "sell_quantity_condition": "2",
}


class ScriptedBackend(PaperStrategyBackend):
    """Paper backend with switchable failures and an optional create gate."""

    def __init__(self):
        super().__init__()
        self.create_error = None
        self.failing_indicator_names = set()
        self.create_gate = None

    async def create_strategy_instance(self, payload):
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            self._record("create_strategy_instance", payload)
            raise self.create_error
        return await super().create_strategy_instance(payload)

    async def add_indicator(self, request):
        if request.name in self.failing_indicator_names:
            self._record("add_indicator", request)
            raise BackendError(503, "indicator service unavailable")
        return await super().add_indicator(request)


def _wizard(backend, **kwargs):
    return StrategyWizardController(
        backend, search_debounce_seconds=0, webhook_base_url=WEBHOOK_URL, **kwargs
    )


async def _walk_to_review(wizard, buy=("RSI",), sell=("MACD",)):
    wizard.select_api_key("paper-key")
    wizard.select_symbol(BTC)
    assert await wizard.handle_next()
    wizard.update_step_data(SIZING)
    for name in buy:
        wizard.add_indicator(IndicatorSide.BUY, name, mandatory=True)
    for name in sell:
        wizard.add_indicator(IndicatorSide.SELL, name)
    assert await wizard.handle_next()
    wizard.update_step_data({"strategy_name": "BTC swing", "strategy_description": "RSI entries"})
    assert wizard.current_step == StepId.REVIEW


def _indicator_calls(backend, start=0):
    return [
        (op, arg if isinstance(arg, str) else arg.name)
        for op, arg in backend.calls[start:]
        if op in ("add_indicator", "remove_indicator")
    ]


# ============================================================================
# Navigation
# ============================================================================

def test_next_is_refused_until_step_is_valid():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        assert await wizard.handle_next() is False
        wizard.select_api_key("paper-key")
        assert wizard.errors_for()["symbol"] == "Please select a trading symbol"
        assert not wizard.can_proceed
        wizard.select_symbol(BTC)
        assert wizard.can_proceed
        assert await wizard.handle_next()
        return wizard

    wizard = asyncio.run(scenario())
    assert wizard.current_step == StepId.CONFIGURATION
    assert wizard.step_title == "Strategy Configuration & Indicators"
    assert wizard.progress == 33


def test_prev_and_go_to():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        await _walk_to_review(wizard)
        assert wizard.handle_prev()
        assert wizard.current_step == StepId.CONFIGURATION
        assert wizard.go_to(StepId.SYMBOL)
        assert wizard.handle_prev() is False
        assert wizard.go_to(StepId.REVIEW)
        assert wizard.current_step == StepId.REVIEW

        fresh = _wizard(PaperStrategyBackend())
        assert fresh.go_to(StepId.CONFIGURATION) is False
        assert fresh.current_step == StepId.SYMBOL

    asyncio.run(scenario())


def test_switching_api_key_drops_symbol():
    wizard = _wizard(PaperStrategyBackend())
    wizard.select_api_key("paper-key")
    wizard.select_symbol(BTC)
    assert wizard.search.state.selected == BTC

    wizard.select_api_key("other-key")
    data = wizard.session.step_data(StepId.SYMBOL)
    assert data.api_key == "other-key"
    assert data.symbol is None
    assert wizard.search.state.selected is None
    assert not wizard.can_proceed


def test_indicator_editing():
    wizard = _wizard(PaperStrategyBackend())
    assert wizard.add_indicator(IndicatorSide.BUY, "   ") is None

    rsi = wizard.add_indicator(IndicatorSide.BUY, "  RSI ")
    ema = wizard.add_indicator(IndicatorSide.BUY, "EMA")
    assert rsi.name == "RSI"
    assert rsi.side == IndicatorSide.BUY
    assert rsi.key

    wizard.toggle_mandatory(IndicatorSide.BUY, rsi.id)
    config = wizard.session.step_data(StepId.CONFIGURATION)
    assert [ind.mandatory for ind in config.buy_indicators] == [True, False]

    wizard.remove_indicator(IndicatorSide.BUY, rsi.id)
    config = wizard.session.step_data(StepId.CONFIGURATION)
    assert [ind.id for ind in config.buy_indicators] == [ema.id]
    assert wizard.errors_for(StepId.CONFIGURATION)["sell_indicators"] == "At least one sell indicator is required"


def test_custom_symbol_entry():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        wizard.select_api_key("paper-key")
        wizard.enter_custom_symbol("sol-usdt")
        await wizard.search.wait_idle()
        return wizard

    wizard = asyncio.run(scenario())
    data = wizard.session.step_data(StepId.SYMBOL)
    assert data.symbol == "SOL-USDT"
    assert data.is_custom is True
    assert [s.symbol for s in wizard.search.state.results] == ["SOL-USDT"]
    assert wizard.can_proceed


# ============================================================================
# Lookups
# ============================================================================

def test_single_api_key_is_selected_automatically():
    wizard = _wizard(PaperStrategyBackend())
    assert asyncio.run(wizard.load_lookups()) is True
    assert [key.api_key_id for key in wizard.api_keys] == ["paper-key"]
    assert wizard.session.step_data(StepId.SYMBOL).api_key == "paper-key"


def test_several_api_keys_leave_selection_to_user():
    backend = PaperStrategyBackend(api_keys=[ApiKey(api_key_id="k1"), ApiKey(api_key_id="k2")])
    wizard = _wizard(backend)
    asyncio.run(wizard.load_lookups())
    assert wizard.session.step_data(StepId.SYMBOL).api_key is None


# ============================================================================
# Submit: create
# ============================================================================

def test_create_flow_adds_each_indicator_once():
    """A new strategy with one buy and one sell indicator issues two adds and no removes."""
    backend = PaperStrategyBackend()
    completed = []

    async def scenario():
        wizard = _wizard(backend, on_complete=completed.append)
        await _walk_to_review(wizard)
        return wizard, await wizard.handle_next()

    wizard, ok = asyncio.run(scenario())

    assert ok is True
    assert len(completed) == 1
    assert len(backend.calls_of("create_strategy_instance")) == 1
    assert _indicator_calls(backend) == [("add_indicator", "RSI"), ("add_indicator", "MACD")]
    assert backend.calls_of("remove_indicator") == []

    instance = backend.instances[completed[0]]
    assert instance.symbol == "BTC-USDT"
    assert instance.name == "BTC swing"
    assert instance.api_key_id == "paper-key"
    buy = backend.strategies[instance.strategy_buy]
    sell = backend.strategies[instance.strategy_sell]
    assert (buy.percent, buy.condition_limit) == ("10", "1")
    assert (sell.percent, sell.condition_limit) == ("10", "2")

    # Success discards the session
    assert wizard.current_step == StepId.SYMBOL
    assert wizard.session.completed == frozenset()
    assert wizard.submit_error is None
    assert wizard.submitting is False


def test_create_payload_shape():
    backend = PaperStrategyBackend()

    async def scenario():
        wizard = _wizard(backend)
        await _walk_to_review(wizard)
        await wizard.handle_submit()

    asyncio.run(scenario())
    (_, payload), = backend.calls_of("create_strategy_instance")
    assert payload.status == 1
    assert payload.hash
    assert payload.created_at
    assert payload.description == "RSI entries"
    assert [s.side for s in payload.strategies] == [IndicatorSide.BUY, IndicatorSide.SELL]
    assert payload.strategies[0].strategy == payload.strategies[1].strategy


def test_async_on_complete_is_awaited():
    seen = []

    async def on_complete(instance_id):
        await asyncio.sleep(0)
        seen.append(instance_id)

    async def scenario():
        wizard = _wizard(PaperStrategyBackend(), on_complete=on_complete)
        await _walk_to_review(wizard)
        return await wizard.handle_next()

    assert asyncio.run(scenario()) is True
    assert len(seen) == 1


def test_submit_refused_before_review():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        wizard.select_api_key("paper-key")
        wizard.select_symbol(BTC)
        return await wizard.handle_submit()

    assert asyncio.run(scenario()) is False


def test_webhook_messages():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        await _walk_to_review(wizard, buy=("RSI", "EMA"), sell=("MACD",))
        return wizard.webhook_messages()

    messages = asyncio.run(scenario())
    assert messages["buy"]["action"] == "BUY"
    assert messages["buy"]["mandatory_count"] == 2
    assert messages["buy"]["webhook_url"] == f"{WEBHOOK_URL}/buy"
    assert [ind["name"] for ind in messages["buy"]["indicators"]] == ["RSI", "EMA"]
    assert messages["sell"]["mandatory_count"] == 0
    assert messages["combined"]["symbol"] == "BTC-USDT"
    assert messages["combined"]["sell_config"]["indicators"][0]["type"] == "sell"


# ============================================================================
# Submit: edit
# ============================================================================

def _create_existing(backend):
    completed = []

    async def scenario():
        wizard = _wizard(backend, on_complete=completed.append)
        await _walk_to_review(wizard, buy=("X",), sell=("Y",))
        assert await wizard.handle_next()

    asyncio.run(scenario())
    return backend.instances[completed[0]]


def test_edit_mode_seeds_session():
    backend = PaperStrategyBackend()
    instance = _create_existing(backend)
    editor = _wizard(backend, instance_to_edit=instance)
    asyncio.run(editor.start())

    assert editor.is_edit_mode
    assert editor.session.completed == frozenset(StepId)
    assert editor.session.step_data(StepId.SYMBOL).symbol == "BTC-USDT"
    assert editor.session.step_data(StepId.REVIEW).strategy_name == "BTC swing"
    config = editor.session.step_data(StepId.CONFIGURATION)
    assert config.operation_percentage == "10"
    assert config.sell_quantity_condition == "2"
    assert [ind.name for ind in config.buy_indicators] == ["X"]
    assert [ind.name for ind in editor.previous_indicators] == ["X", "Y"]
    assert editor.search.state.query == "BTC-USDT"


def test_edit_flow_adds_then_removes():
    """Removing X and adding Z issues one add for Z, then one remove for X."""
    backend = PaperStrategyBackend()
    instance = _create_existing(backend)
    mark = len(backend.calls)

    async def scenario():
        editor = _wizard(backend, instance_to_edit=instance)
        await editor.start()
        x = editor.session.step_data(StepId.CONFIGURATION).buy_indicators[0]
        assert editor.go_to(StepId.CONFIGURATION)
        editor.remove_indicator(IndicatorSide.BUY, x.id)
        editor.add_indicator(IndicatorSide.BUY, "Z")
        editor.update_step_data({"operation_percentage": "25"})
        assert editor.go_to(StepId.REVIEW)
        return await editor.handle_next(), x

    ok, x = asyncio.run(scenario())

    assert ok is True
    assert backend.calls_of("create_strategy_instance")[1:] == []
    (_, update), = backend.calls_of("update_strategy_instance")
    assert update.id == instance.id
    assert update.side == IndicatorSide.BUY
    assert update.percent == "25"
    indicator_calls = [call for call in backend.calls[mark:] if call[0] in ("add_indicator", "remove_indicator")]
    assert [call[0] for call in indicator_calls] == ["add_indicator", "remove_indicator"]
    assert indicator_calls[0][1].name == "Z"
    assert indicator_calls[1][1] == x.id
    assert backend.strategies[instance.strategy_buy].percent == "25"


# ============================================================================
# Submit failures
# ============================================================================

def test_create_failure_keeps_session():
    backend = ScriptedBackend()
    backend.create_error = BackendError(500, "database unavailable")

    async def scenario():
        wizard = _wizard(backend)
        await _walk_to_review(wizard)
        first = await wizard.handle_next()
        state = (wizard.submit_error, wizard.submit_error_kind, wizard.current_step)
        backend.create_error = None
        second = await wizard.handle_next()
        return first, state, second

    first, (error, kind, step), second = asyncio.run(scenario())
    assert first is False
    assert error == "database unavailable"
    assert kind == SubmitErrorKind.SUBMISSION
    assert step == StepId.REVIEW
    assert second is True
    assert len(backend.instances) == 1
    assert _indicator_calls(backend) == [("add_indicator", "RSI"), ("add_indicator", "MACD")]


def test_indicator_sync_failure_is_reported_separately():
    backend = ScriptedBackend()
    backend.failing_indicator_names = {"MACD"}

    async def scenario():
        wizard = _wizard(backend)
        await _walk_to_review(wizard)
        ok = await wizard.handle_next()
        return wizard, ok

    wizard, ok = asyncio.run(scenario())
    assert ok is False
    assert wizard.submit_error_kind == SubmitErrorKind.INDICATOR_SYNC
    assert wizard.submit_error.startswith("Strategy saved, but indicator sync is incomplete")
    assert wizard.current_step == StepId.REVIEW
    assert len(backend.instances) == 1
    assert [ind.name for ind in wizard.previous_indicators] == ["RSI"]
    assert [ind.name for ind in wizard.last_sync.added] == ["RSI"]


def test_retry_after_sync_failure_updates_instead_of_creating():
    backend = ScriptedBackend()
    backend.failing_indicator_names = {"MACD"}

    async def scenario():
        wizard = _wizard(backend)
        await _walk_to_review(wizard)
        assert await wizard.handle_next() is False
        mark = len(backend.calls)
        backend.failing_indicator_names = set()
        return await wizard.handle_submit(), mark

    ok, mark = asyncio.run(scenario())
    assert ok is True
    assert len(backend.calls_of("create_strategy_instance")) == 1
    assert len(backend.calls_of("update_strategy_instance")) == 1
    assert _indicator_calls(backend, mark) == [("add_indicator", "MACD")]
    (instance_id,) = backend.instances
    names = sorted(ind.name for ind in asyncio.run(backend.get_indicators_by_instance(instance_id)))
    assert names == ["MACD", "RSI"]


def test_close_is_refused_while_submitting():
    backend = ScriptedBackend()

    async def scenario():
        backend.create_gate = asyncio.Event()
        wizard = _wizard(backend)
        await _walk_to_review(wizard)
        submit = asyncio.create_task(wizard.handle_submit())
        await asyncio.sleep(0.01)
        during = {
            "submitting": wizard.submitting,
            "close": wizard.handle_close(),
            "second_submit": await wizard.handle_submit(),
            "prev": wizard.handle_prev(),
            "can_proceed": wizard.can_proceed,
        }
        backend.create_gate.set()
        return during, await submit, wizard

    during, ok, wizard = asyncio.run(scenario())
    assert during == {
        "submitting": True,
        "close": False,
        "second_submit": False,
        "prev": False,
        "can_proceed": False,
    }
    assert ok is True
    assert wizard.submitting is False
    assert len(backend.calls_of("create_strategy_instance")) == 1


def test_close_discards_session_and_search():
    async def scenario():
        wizard = _wizard(PaperStrategyBackend())
        await _walk_to_review(wizard)
        old_search = wizard.search
        assert wizard.handle_close() is True
        return wizard, old_search

    wizard, old_search = asyncio.run(scenario())
    assert old_search.closed
    assert not wizard.search.closed
    assert wizard.current_step == StepId.SYMBOL
    assert wizard.session.step_data(StepId.SYMBOL).api_key is None
    assert wizard.step_errors == {}


def test_start_is_noop_in_create_mode():
    backend = PaperStrategyBackend()
    wizard = _wizard(backend)
    asyncio.run(wizard.start())
    assert backend.calls == []
    assert wizard.session.completed == frozenset()


def test_start_propagates_load_failure():
    class BrokenBackend(PaperStrategyBackend):
        async def get_indicators_by_instance(self, instance_id):
            raise BackendError(500, "indicators unavailable")

    backend = BrokenBackend()
    instance = _create_existing(backend)
    editor = _wizard(backend, instance_to_edit=instance)
    with pytest.raises(BackendError):
        asyncio.run(editor.start())
