"""
Strategy payload assembly.

Aggregates the per-step data of a wizard session into the payloads sent to
the backend, and turns an existing instance back into step data for editing.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, cast
import uuid

from api.models import (
    Indicator,
    IndicatorSide,
    SideStrategy,
    StrategyInstance,
    StrategyInstancePayload,
    StrategyTemplate,
    StrategyUpdatePayload,
)
from engine.steps import ConfigurationStepData, ReviewStepData, StepId, SymbolStepData
from engine.wizard_session import WizardSession


def _steps(session: WizardSession) -> Tuple[SymbolStepData, ConfigurationStepData, ReviewStepData]:
    return (
        cast(SymbolStepData, session.step_data(StepId.SYMBOL)),
        cast(ConfigurationStepData, session.step_data(StepId.CONFIGURATION)),
        cast(ReviewStepData, session.step_data(StepId.REVIEW)),
    )


def build_side_strategies(
    config: ConfigurationStepData,
    name: Optional[str] = None,
    strategy_uuid: Optional[str] = None,
) -> List[SideStrategy]:
    """
    Derive the buy and sell sub-configurations.

    Both sides share the sizing parameters and differ in side and quantity
    condition. The buy side comes first.
    """
    shared = {
        "percent": config.operation_percentage,
        "interval": config.interval_between_operations,
        "simultaneous_operations": config.simultaneous_operations,
        "name": name,
        "strategy": strategy_uuid,
    }
    return [
        SideStrategy(side=IndicatorSide.BUY, condition_limit=config.buy_quantity_condition, **shared),
        SideStrategy(side=IndicatorSide.SELL, condition_limit=config.sell_quantity_condition, **shared),
    ]


def desired_indicators(session: WizardSession) -> List[Indicator]:
    """Indicators the wizard ends with: buy side first, then sell side."""
    _, config, _ = _steps(session)
    return config.all_indicators()


def build_create_payload(session: WizardSession, strategy_uuid: Optional[str] = None) -> StrategyInstancePayload:
    """
    Payload for creating a new instance.

    Raises:
        ValueError: if the symbol step carries no API key or symbol
    """
    symbol, config, review = _steps(session)
    if not symbol.api_key or not symbol.symbol:
        raise ValueError("Cannot submit a strategy without an API key and a symbol")
    strategy_uuid = strategy_uuid or str(uuid.uuid4())
    return StrategyInstancePayload(
        name=review.strategy_name,
        api_key=symbol.api_key,
        symbol=symbol.symbol,
        strategies=build_side_strategies(config, review.strategy_name, strategy_uuid),
        description=review.strategy_description,
    )


def build_update_payload(session: WizardSession, instance: StrategyInstance) -> StrategyUpdatePayload:
    """Payload for updating ``instance``; the backend takes the buy side parameters."""
    _, config, review = _steps(session)
    buy = build_side_strategies(config, review.strategy_name, instance.strategy_uuid)[0]
    return StrategyUpdatePayload(
        id=instance.id,
        name=review.strategy_name,
        side=buy.side,
        percent=buy.percent,
        condition_limit=buy.condition_limit,
        interval=buy.interval,
        simultaneous_operations=buy.simultaneous_operations,
        tp=buy.tp,
        sl=buy.sl,
    )


def _blank(value: Any) -> Any:
    return "" if value is None else value


def build_initial_data(
    instance: StrategyInstance,
    buy_strategy: Optional[StrategyTemplate],
    sell_strategy: Optional[StrategyTemplate],
    indicators: Iterable[Indicator],
) -> Dict[StepId, Dict[str, Any]]:
    """Step data reproducing an existing instance, used to seed an edit session."""
    indicators = list(indicators)
    sizing = buy_strategy or sell_strategy
    configuration: Dict[str, Any] = {
        "buy_indicators": [ind for ind in indicators if ind.side == IndicatorSide.BUY],
        "sell_indicators": [ind for ind in indicators if ind.side == IndicatorSide.SELL],
    }
    if sizing is not None:
        configuration.update({
            "operation_percentage": _blank(sizing.percent),
            "simultaneous_operations": _blank(sizing.simultaneous_operations),
            "interval_between_operations": _blank(sizing.interval),
        })
    if buy_strategy is not None:
        configuration["buy_quantity_condition"] = _blank(buy_strategy.condition_limit)
    if sell_strategy is not None:
        configuration["sell_quantity_condition"] = _blank(sell_strategy.condition_limit)

    return {
        StepId.SYMBOL: {"symbol": instance.symbol, "api_key": instance.api_key_id},
        StepId.CONFIGURATION: configuration,
        StepId.REVIEW: {
            "strategy_name": instance.name,
            "strategy_description": instance.description or "",
        },
    }


def _side_message(symbol: Optional[str], name: str, side: IndicatorSide,
                  indicators: List[Indicator], webhook_base_url: str) -> Dict[str, Any]:
    return {
        "symbol": symbol,
        "action": side.value.upper(),
        "strategy_name": name,
        "indicators": [
            {"id": ind.id, "name": ind.name, "mandatory": ind.mandatory} for ind in indicators
        ],
        "mandatory_count": sum(1 for ind in indicators if ind.mandatory),
        "webhook_url": f"{webhook_base_url}/{side.value}",
        "timestamp": "{{time}}",
    }


def build_webhook_messages(session: WizardSession, webhook_base_url: str) -> Mapping[str, Dict[str, Any]]:
    """
    Alert message bodies shown on the review step.

    Returns:
        ``buy`` and ``sell`` per-side messages plus a ``combined`` summary
    """
    symbol, config, review = _steps(session)
    buy = list(config.buy_indicators)
    sell = list(config.sell_indicators)
    base_url = webhook_base_url.rstrip("/")
    return {
        "buy": _side_message(symbol.symbol, review.strategy_name, IndicatorSide.BUY, buy, base_url),
        "sell": _side_message(symbol.symbol, review.strategy_name, IndicatorSide.SELL, sell, base_url),
        "combined": {
            "strategy": review.strategy_name,
            "symbol": symbol.symbol,
            "buy_config": {
                "action": "BUY",
                "indicators": [ind.model_dump(mode="json", by_alias=True) for ind in buy],
                "mandatory_count": sum(1 for ind in buy if ind.mandatory),
            },
            "sell_config": {
                "action": "SELL",
                "indicators": [ind.model_dump(mode="json", by_alias=True) for ind in sell],
                "mandatory_count": sum(1 for ind in sell if ind.mandatory),
            },
            "webhook_base_url": base_url,
        },
    }
