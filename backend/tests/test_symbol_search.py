"""
Tests for the debounced symbol search controller.

Async scenarios run through asyncio.run inside plain test functions.
"""

import asyncio

from api.models import Symbol
from services.paper_backend import PaperStrategyBackend
from services.strategy_backend import BackendError
from services.symbol_search import (
    DEFAULT_SYMBOLS,
    SymbolSearchController,
    backend_search_function,
    get_symbol_icon,
)

DEBOUNCE = 0.05


def _recording_execute(calls):
    async def execute(query):
        calls.append(query)
        return [Symbol(symbol=f"{query.upper()}-USDT", base_asset=query.upper(), type="crypto")]
    return execute


def _gated_execute(gates, ignore_cancel=False):
    """Search function that resolves only when the gate of its query is set."""
    async def execute(query):
        try:
            await gates[query].wait()
        except asyncio.CancelledError:
            if not ignore_cancel:
                raise
            # Backend that answers even though the caller gave up
            await gates[query].wait()
        return [Symbol(symbol=f"{query.upper()}-USDT", base_asset=query.upper())]
    return execute


def test_short_query_shows_defaults_without_searching():
    calls = []
    search = SymbolSearchController(_recording_execute(calls), debounce_seconds=DEBOUNCE, min_query_length=2)
    search.update_query("b")
    assert calls == []
    assert search.state.show_defaults
    assert search.state.results == ()
    assert not search.state.is_loading
    assert search.display_symbols == DEFAULT_SYMBOLS
    assert not search.is_search_active


def test_debounce_coalesces_rapid_queries():
    """b, bt, btc typed within the debounce window execute one search for btc."""
    calls = []

    async def scenario():
        search = SymbolSearchController(_recording_execute(calls), debounce_seconds=DEBOUNCE, min_query_length=2)
        for text in ("b", "bt", "btc"):
            search.update_query(text)
            await asyncio.sleep(DEBOUNCE / 5)
        assert calls == []
        await search.wait_idle()
        return search

    search = asyncio.run(scenario())
    assert calls == ["btc"]
    assert search.executions == 1
    assert [s.symbol for s in search.state.results] == ["BTC-USDT"]
    assert search.state.results[0].icon == get_symbol_icon("BTC")
    assert search.state.results[0].is_default is False
    assert search.display_symbols == search.state.results


def test_loading_flag_covers_execution_only():
    gates = {}

    async def scenario():
        gates["btc"] = asyncio.Event()
        search = SymbolSearchController(_gated_execute(gates), debounce_seconds=DEBOUNCE, min_query_length=2)
        search.update_query("btc")
        assert not search.state.is_loading
        await asyncio.sleep(DEBOUNCE * 2)
        assert search.state.is_loading
        assert search.search_stats()["is_searching"] is True
        gates["btc"].set()
        await search.wait_idle()
        assert not search.state.is_loading

    asyncio.run(scenario())


def test_superseded_search_is_cancelled():
    gates = {}

    async def scenario():
        gates.update(btc=asyncio.Event(), eth=asyncio.Event())
        search = SymbolSearchController(_gated_execute(gates), debounce_seconds=0, min_query_length=2)
        search.update_query("btc")
        await asyncio.sleep(0.02)
        search.update_query("eth")
        gates["eth"].set()
        await search.wait_idle()
        return search

    search = asyncio.run(scenario())
    assert search.executions == 2
    assert [s.symbol for s in search.state.results] == ["ETH-USDT"]


def test_stale_response_never_overwrites_newer_results():
    """A late btc answer arriving after eth resolved is dropped."""
    gates = {}

    async def scenario():
        gates.update(btc=asyncio.Event(), eth=asyncio.Event())
        search = SymbolSearchController(
            _gated_execute(gates, ignore_cancel=True), debounce_seconds=0, min_query_length=2
        )
        search.update_query("btc")
        await asyncio.sleep(0.02)
        stale_task = search._task
        search.update_query("eth")
        await asyncio.sleep(0.02)
        gates["eth"].set()
        await search.wait_idle()
        results_before = search.state.results

        gates["btc"].set()
        await asyncio.gather(stale_task, return_exceptions=True)
        return results_before, search.state

    results_before, state = asyncio.run(scenario())
    assert [s.symbol for s in results_before] == ["ETH-USDT"]
    assert state.results == results_before
    assert state.query == "eth"
    assert not state.is_loading


def test_search_failure_is_captured():
    async def failing(_query):
        raise BackendError(500, "exchange down")

    async def scenario():
        search = SymbolSearchController(failing, debounce_seconds=0, min_query_length=2)
        search.update_query("btc")
        await search.wait_idle()
        return search

    search = asyncio.run(scenario())
    assert search.state.error == "Backend error 500: exchange down"
    assert search.state.results == ()
    assert not search.state.is_loading
    assert search.search_stats()["has_error"] is True


def test_search_without_api_key_reports_error():
    execute = backend_search_function(PaperStrategyBackend(), lambda: None)

    async def scenario():
        search = SymbolSearchController(execute, debounce_seconds=0, min_query_length=2)
        search.update_query("sol")
        await search.wait_idle()
        return search

    search = asyncio.run(scenario())
    assert search.state.error == "API key is required for symbol search"


def test_search_through_paper_backend():
    backend = PaperStrategyBackend()
    execute = backend_search_function(backend, lambda: "paper-key")

    async def scenario():
        search = SymbolSearchController(execute, debounce_seconds=0, min_query_length=2)
        search.update_query("sol")
        await search.wait_idle()
        return search

    search = asyncio.run(scenario())
    assert [s.symbol for s in search.state.results] == ["SOL-USDT"]
    assert search.state.results[0].icon == "◎"
    assert backend.calls_of("search_symbols") == [("search_symbols", "sol")]


def test_close_suppresses_late_response():
    gates = {}
    changes = []

    async def scenario():
        gates["btc"] = asyncio.Event()
        search = SymbolSearchController(
            _gated_execute(gates, ignore_cancel=True),
            debounce_seconds=0,
            min_query_length=2,
            on_change=changes.append,
        )
        search.update_query("btc")
        await asyncio.sleep(0.02)
        in_flight = search._task
        search.close()
        seen = len(changes)
        gates["btc"].set()
        await asyncio.gather(in_flight, return_exceptions=True)
        search.update_query("eth")
        return search, seen

    search, seen = asyncio.run(scenario())
    assert search.closed
    assert len(changes) == seen
    assert search.state.results == ()
    assert search.state.query == "btc"


def test_select_and_clear_selection():
    search = SymbolSearchController(_recording_execute([]), debounce_seconds=0, min_query_length=2)
    symbol = DEFAULT_SYMBOLS[1]
    search.select_symbol(symbol)
    assert search.state.selected == symbol
    assert search.state.query == "ETH-USDT"
    assert not search.state.show_defaults

    search.clear_selection()
    assert search.state.selected is None
    assert search.state.query == ""
    assert search.display_symbols == DEFAULT_SYMBOLS


def test_empty_query_clears_selection():
    search = SymbolSearchController(_recording_execute([]), debounce_seconds=0, min_query_length=2)
    search.prime("BTC-USDT")
    assert search.state.selected.symbol == "BTC-USDT"
    search.update_query("")
    assert search.state.selected is None


def test_filter_by_type_and_icons():
    search = SymbolSearchController(_recording_execute([]), debounce_seconds=0, min_query_length=2)
    assert len(search.filter_by_type("crypto")) == len(DEFAULT_SYMBOLS)
    assert search.filter_by_type("stock") == ()
    assert get_symbol_icon("eth") == "Ξ"
    assert get_symbol_icon("XYZ") == "🪙"
