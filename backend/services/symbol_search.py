"""
Symbol Search Service.

Debounced, cancellable symbol search feeding the symbol step.

Every query change bumps a generation counter, cancels the pending search
task and, for queries long enough to search, starts a new task that sleeps
for the debounce interval before calling the search function. A result is
applied only if its generation is still the latest one, so a late response
for an old query can never overwrite newer state.
"""

from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple
import asyncio
import logging

from api.models import Symbol
from config.settings import get_settings
from services.strategy_backend import StrategyBackendInterface

logger = logging.getLogger(__name__)

SearchFunction = Callable[[str], Awaitable[Sequence[Symbol]]]

# Results at or above this size are assumed to be a truncated page.
RESULT_PAGE_SIZE = 50

DEFAULT_SYMBOLS: Tuple[Symbol, ...] = (
    Symbol(symbol="BTC-USDT", name="Bitcoin/Tether", base_asset="BTC", quote_asset="USDT",
           type="crypto", is_default=True, icon="₿"),
    Symbol(symbol="ETH-USDT", name="Ethereum/Tether", base_asset="ETH", quote_asset="USDT",
           type="crypto", is_default=True, icon="Ξ"),
    Symbol(symbol="BTC-ETH", name="Bitcoin/Ethereum", base_asset="BTC", quote_asset="ETH",
           type="crypto", is_default=True, icon="₿"),
)

_SYMBOL_ICONS = {
    "BTC": "₿",
    "ETH": "Ξ",
    "LTC": "Ł",
    "ADA": "₳",
    "DOT": "●",
    "USDT": "₮",
    "USDC": "$",
    "BNB": "🔶",
    "SOL": "◎",
    "MATIC": "🔷",
}
_FALLBACK_ICON = "🪙"


def get_symbol_icon(asset: Optional[str]) -> str:
    """Icon for a base asset (or raw symbol), with a generic coin as fallback."""
    return _SYMBOL_ICONS.get((asset or "").upper(), _FALLBACK_ICON)


def _enrich(symbol: Symbol) -> Symbol:
    return symbol.model_copy(update={
        "is_default": False,
        "icon": get_symbol_icon(symbol.base_asset or symbol.symbol),
    })


@dataclass(frozen=True)
class SearchState:
    """Observable state of a symbol search."""
    query: str = ""
    results: Tuple[Symbol, ...] = ()
    is_loading: bool = False
    error: Optional[str] = None
    selected: Optional[Symbol] = None
    show_defaults: bool = True


class SymbolSearchController:
    """
    Owns one search box.

    Must be driven from a running asyncio event loop. At most one search task
    is pending at a time.
    """

    def __init__(
        self,
        execute: SearchFunction,
        debounce_seconds: Optional[float] = None,
        min_query_length: Optional[int] = None,
        on_change: Optional[Callable[[SearchState], None]] = None,
    ):
        """
        Initialize search controller.

        Args:
            execute: Coroutine function performing the actual search
            debounce_seconds: Quiet period before searching (default: settings)
            min_query_length: Shorter queries show the defaults (default: settings)
            on_change: Listener called with every new state
        """
        settings = get_settings()
        self._execute = execute
        self.debounce_seconds = (
            settings.search_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.min_query_length = (
            settings.search_min_query_length if min_query_length is None else min_query_length
        )
        self.on_change = on_change

        self._state = SearchState()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.executions = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SearchState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def display_symbols(self) -> Tuple[Symbol, ...]:
        """Defaults while nothing is being searched, otherwise the results."""
        if self._state.show_defaults and len(self._state.query.strip()) < self.min_query_length:
            return DEFAULT_SYMBOLS
        return self._state.results

    @property
    def is_search_active(self) -> bool:
        return len(self._state.query.strip()) >= self.min_query_length

    @property
    def has_results(self) -> bool:
        return len(self._state.results) > 0

    @property
    def is_empty(self) -> bool:
        return not self._state.results and not self._state.show_defaults

    def search_stats(self) -> Dict[str, Any]:
        return {
            "total_results": len(self._state.results),
            "has_more": len(self._state.results) >= RESULT_PAGE_SIZE,
            "query": self._state.query.strip(),
            "is_searching": self._state.is_loading,
            "has_error": self._state.error is not None,
        }

    def filter_by_type(self, symbol_type: str) -> Tuple[Symbol, ...]:
        return tuple(symbol for symbol in self.display_symbols if symbol.type == symbol_type)

    def _set_state(self, **changes) -> None:
        if self._closed:
            return
        self._state = replace(self._state, **changes)
        if self.on_change is not None:
            self.on_change(self._state)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def update_query(self, query: str) -> None:
        """
        React to a change of the search text.

        Short queries resolve immediately to the default list without any
        search call. Longer ones (re)arm the debounce timer.
        """
        if self._closed:
            logger.debug("Ignoring query %r on a closed search", query)
            return
        generation = self._supersede()
        text = query.strip()
        changes: Dict[str, Any] = {"query": query, "is_loading": False}
        if not text:
            changes["selected"] = None

        if len(text) < self.min_query_length:
            self._set_state(results=(), show_defaults=True, error=None, **changes)
            return

        self._set_state(**changes)
        self._task = asyncio.get_running_loop().create_task(self._debounced_search(generation, text))

    def select_symbol(self, symbol: Symbol) -> None:
        """Pick a symbol: the query becomes its canonical string and results clear."""
        self._supersede()
        self._set_state(
            selected=symbol,
            query=symbol.symbol,
            results=(),
            show_defaults=False,
            is_loading=False,
            error=None,
        )

    def clear_selection(self) -> None:
        """Forget the selection and go back to the default list."""
        self._supersede()
        self._set_state(
            selected=None,
            query="",
            results=(),
            show_defaults=True,
            is_loading=False,
            error=None,
        )

    def prime(self, symbol: str) -> None:
        """Pre-select an existing symbol string (edit mode) without searching."""
        self._supersede()
        self._set_state(
            selected=Symbol(symbol=symbol),
            query=symbol,
            results=(),
            show_defaults=False,
            is_loading=False,
            error=None,
        )

    def close(self) -> None:
        """Cancel outstanding work; no state changes are applied afterwards."""
        self._supersede()
        self._closed = True

    async def wait_idle(self) -> None:
        """Wait until no search task is pending."""
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _supersede(self) -> int:
        """Invalidate every earlier request and cancel the pending task."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    async def _debounced_search(self, generation: int, query: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if not self._is_current(generation):
            return

        self._set_state(is_loading=True, error=None, show_defaults=False)
        self.executions += 1
        logger.debug("Searching symbols for %r (generation %d)", query, generation)
        try:
            found = await self._execute(query)
        except Exception as exc:
            if not self._is_current(generation):
                logger.debug("Dropping stale search failure for %r: %s", query, exc)
                return
            logger.warning("Symbol search for %r failed: %s", query, exc)
            self._set_state(results=(), is_loading=False, error=str(exc) or "Failed to search symbols")
            return

        if not self._is_current(generation):
            logger.debug("Dropping stale search results for %r", query)
            return
        self._set_state(
            results=tuple(_enrich(symbol) for symbol in found),
            show_defaults=False,
            is_loading=False,
            error=None,
        )


def backend_search_function(
    backend: StrategyBackendInterface,
    api_key_id: Callable[[], Optional[str]],
) -> SearchFunction:
    """
    Bind a backend to the API key the user currently has selected.

    Args:
        backend: Backend providing search_symbols
        api_key_id: Returns the selected API key id at call time
    """
    async def execute(query: str) -> Sequence[Symbol]:
        key = api_key_id()
        if not key:
            raise ValueError("API key is required for symbol search")
        return await backend.search_symbols(key, query)

    return execute
