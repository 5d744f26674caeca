"""
Paper Strategy Backend.

In-memory implementation of the strategy backend. Used by the test suite and
by the local reference app; nothing is persisted beyond the process.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import uuid

from api.models import (
    Ack,
    AddIndicatorRequest,
    ApiKey,
    Indicator,
    IndicatorSide,
    Sharing,
    StrategyInstance,
    StrategyInstancePayload,
    StrategyTemplate,
    StrategyUpdatePayload,
    Symbol,
)
from services.strategy_backend import BackendError, StrategyBackendInterface

logger = logging.getLogger(__name__)

_DEFAULT_CATALOG: Tuple[Tuple[str, str, str, str], ...] = (
    ("BTC-USDT", "Bitcoin/Tether", "BTC", "USDT"),
    ("ETH-USDT", "Ethereum/Tether", "ETH", "USDT"),
    ("BTC-ETH", "Bitcoin/Ethereum", "BTC", "ETH"),
    ("SOL-USDT", "Solana/Tether", "SOL", "USDT"),
    ("ADA-USDT", "Cardano/Tether", "ADA", "USDT"),
    ("LTC-BTC", "Litecoin/Bitcoin", "LTC", "BTC"),
    ("BNB-USDT", "BNB/Tether", "BNB", "USDT"),
)


def default_symbol_catalog() -> List[Symbol]:
    return [
        Symbol(symbol=symbol, name=name, base_asset=base, quote_asset=quote, type="crypto")
        for symbol, name, base, quote in _DEFAULT_CATALOG
    ]


class PaperStrategyBackend(StrategyBackendInterface):
    """
    In-memory strategy backend.

    Keeps API keys, instances, side strategies, indicators and sharings in
    dictionaries. Every call is appended to ``calls`` so tests can assert the
    exact sequence the wizard issued.
    """

    def __init__(
        self,
        api_keys: Optional[Iterable[ApiKey]] = None,
        symbols: Optional[Iterable[Symbol]] = None,
    ):
        """
        Initialize paper backend.

        Args:
            api_keys: Registered API keys (default: one paper key)
            symbols: Symbol catalog searchable through every key
        """
        keys = list(api_keys) if api_keys is not None else [
            ApiKey(api_key_id="paper-key", name="Paper", exchange="paper"),
        ]
        self.api_keys: Dict[str, ApiKey] = {key.api_key_id: key for key in keys}
        self.symbols: List[Symbol] = list(symbols) if symbols is not None else default_symbol_catalog()
        self.instances: Dict[str, StrategyInstance] = {}
        self.strategies: Dict[str, StrategyTemplate] = {}
        self.indicators: Dict[str, Dict[str, Any]] = {}
        self.sharings: Dict[str, Sharing] = {}
        self.calls: List[Tuple[str, Any]] = []

    def _record(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))

    # ------------------------------------------------------------------
    # Symbols and lookups
    # ------------------------------------------------------------------

    async def search_symbols(self, api_key_id: str, query: str) -> List[Symbol]:
        self._record("search_symbols", query)
        if api_key_id not in self.api_keys:
            raise BackendError(404, f"API key not found: {api_key_id}")
        needle = query.strip().upper().replace("/", "-")
        return [
            symbol for symbol in self.symbols
            if needle in symbol.symbol.upper() or needle in (symbol.name or "").upper()
        ]

    async def list_strategy_templates(self) -> List[StrategyTemplate]:
        self._record("list_strategy_templates", None)
        return list(self.strategies.values())

    async def list_sharings(self) -> List[Sharing]:
        self._record("list_sharings", None)
        return list(self.sharings.values())

    async def list_api_keys(self) -> List[ApiKey]:
        self._record("list_api_keys", None)
        return list(self.api_keys.values())

    async def get_strategy_parameters(self, strategy_id: str) -> Optional[StrategyTemplate]:
        self._record("get_strategy_parameters", strategy_id)
        return self.strategies.get(strategy_id)

    async def get_indicators_by_instance(self, instance_id: str) -> List[Indicator]:
        self._record("get_indicators_by_instance", instance_id)
        return [
            row["indicator"] for row in self.indicators.values()
            if row["instance_id"] == instance_id
        ]

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def create_strategy_instance(self, payload: StrategyInstancePayload) -> str:
        self._record("create_strategy_instance", payload)
        if payload.api_key not in self.api_keys:
            raise BackendError(400, f"Unknown API key: {payload.api_key}")

        instance_id = str(uuid.uuid4())
        side_ids: Dict[IndicatorSide, str] = {}
        for side_strategy in payload.strategies:
            strategy_id = str(uuid.uuid4())
            self.strategies[strategy_id] = StrategyTemplate(
                id=strategy_id,
                name=side_strategy.name or payload.name,
                side=side_strategy.side,
                percent=side_strategy.percent,
                condition_limit=side_strategy.condition_limit,
                interval=side_strategy.interval,
                simultaneous_operations=side_strategy.simultaneous_operations,
                tp=side_strategy.tp,
                sl=side_strategy.sl,
            )
            side_ids[side_strategy.side] = strategy_id

        self.instances[instance_id] = StrategyInstance(
            id=instance_id,
            name=payload.name,
            symbol=payload.symbol,
            api_key_id=payload.api_key,
            strategy_buy=side_ids.get(IndicatorSide.BUY),
            strategy_sell=side_ids.get(IndicatorSide.SELL),
            strategy_uuid=next((s.strategy for s in payload.strategies if s.strategy), None),
            description=payload.description,
        )
        logger.info("Paper backend created instance %s (%s)", instance_id, payload.name)
        return instance_id

    async def update_strategy_instance(self, payload: StrategyUpdatePayload) -> str:
        self._record("update_strategy_instance", payload)
        instance = self.instances.get(payload.id)
        if instance is None:
            raise BackendError(404, f"Instance not found: {payload.id}")

        self.instances[payload.id] = instance.model_copy(update={"name": payload.name})
        strategy_id = instance.strategy_buy if payload.side == IndicatorSide.BUY else instance.strategy_sell
        if strategy_id and strategy_id in self.strategies:
            self.strategies[strategy_id] = self.strategies[strategy_id].model_copy(update={
                "name": payload.name,
                "percent": payload.percent,
                "condition_limit": payload.condition_limit,
                "interval": payload.interval,
                "simultaneous_operations": payload.simultaneous_operations,
                "tp": payload.tp,
                "sl": payload.sl,
            })
        return payload.id

    # ------------------------------------------------------------------
    # Indicators
    # ------------------------------------------------------------------

    async def add_indicator(self, request: AddIndicatorRequest) -> Ack:
        self._record("add_indicator", request)
        if request.instance_id not in self.instances:
            raise BackendError(404, f"Instance not found: {request.instance_id}")

        existing = self.indicators.get(request.indicator_key)
        if existing is not None and existing["instance_id"] == request.instance_id:
            return Ack(message="Indicator already attached", id=request.indicator_key)

        self.indicators[request.indicator_key] = {
            "instance_id": request.instance_id,
            "indicator": Indicator(
                id=request.indicator_key,
                name=request.name,
                mandatory=request.mandatory,
                side=request.type,
                key=request.indicator_key,
            ),
        }
        return Ack(message="Indicator added", id=request.indicator_key)

    async def remove_indicator(self, indicator_id: str) -> Ack:
        self._record("remove_indicator", indicator_id)
        if self.indicators.pop(indicator_id, None) is None:
            return Ack(message="Indicator already removed", id=indicator_id)
        return Ack(message="Indicator removed", id=indicator_id)

    # ------------------------------------------------------------------
    # Sharings
    # ------------------------------------------------------------------

    def share_instance(self, instance_id: str, name: str = "") -> Sharing:
        """Register a sharing record for an instance."""
        if instance_id not in self.instances:
            raise BackendError(404, f"Instance not found: {instance_id}")
        sharing = Sharing(id=str(uuid.uuid4()), name=name or self.instances[instance_id].name, instance_id=instance_id)
        self.sharings[sharing.id] = sharing
        return sharing

    def calls_of(self, *operations: str) -> List[Tuple[str, Any]]:
        """Recorded calls restricted to ``operations``, in issue order."""
        return [call for call in self.calls if call[0] in operations]
