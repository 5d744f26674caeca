"""
API Routes.
REST endpoints of the reference strategy backend, served from the in-memory
paper backend. Paths and envelopes match what HttpStrategyBackend calls.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from services.paper_backend import PaperStrategyBackend
from services.strategy_backend import StrategyBackendInterface

from .models import (
    Ack,
    AddIndicatorRequest,
    ApiKeysResponse,
    EntityRef,
    IndicatorsResponse,
    RemoveIndicatorRequest,
    SaveInstanceResponse,
    SharingsResponse,
    StrategiesResponse,
    StrategyInstancePayload,
    StrategyTemplate,
    StrategyUpdatePayload,
    SymbolsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_backend: Optional[StrategyBackendInterface] = None


def get_backend() -> StrategyBackendInterface:
    """Backend dependency; a process-wide paper backend unless overridden."""
    global _backend
    if _backend is None:
        _backend = PaperStrategyBackend()
    return _backend


def reset_backend() -> None:
    """Drop the process-wide backend so the next request starts empty."""
    global _backend
    _backend = None


# ============================================================================
# Symbols
# ============================================================================

@router.get("/get_symbols_by_api", response_model=SymbolsResponse, tags=["Symbols"])
async def get_symbols_by_api(
    id: str = Query(..., description="API key id"),
    query: str = Query("", description="Search text"),
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Search symbols on the exchange behind an API key."""
    if len(query.strip()) < 2:
        raise HTTPException(status_code=400, detail="Query must be at least 2 characters")
    return SymbolsResponse(symbols=await backend.search_symbols(id, query))


# ============================================================================
# Strategy instances
# ============================================================================

@router.post("/save_instance", response_model=SaveInstanceResponse, tags=["Instances"])
async def save_instance(
    payload: StrategyInstancePayload,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Create a strategy instance with its buy and sell side strategies."""
    instance_id = await backend.create_strategy_instance(payload)
    return SaveInstanceResponse(instance_id=instance_id, id=instance_id)


@router.post("/update_strategy_parameters", response_model=EntityRef, tags=["Instances"])
async def update_strategy_parameters(
    payload: StrategyUpdatePayload,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Update an instance name and one side's parameters."""
    return EntityRef(id=await backend.update_strategy_instance(payload))


@router.post("/get_strategy_parameters", response_model=StrategyTemplate, tags=["Strategies"])
async def get_strategy_parameters(
    ref: EntityRef,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Get the saved parameters of one side strategy."""
    strategy = await backend.get_strategy_parameters(ref.id)
    if strategy is None:
        raise HTTPException(status_code=404, detail=f"Strategy not found: {ref.id}")
    return strategy


@router.get("/get_strategies", response_model=StrategiesResponse, tags=["Strategies"])
async def get_strategies(backend: StrategyBackendInterface = Depends(get_backend)):
    return StrategiesResponse(strategies=await backend.list_strategy_templates())


@router.get("/user_sharings", response_model=SharingsResponse, tags=["Strategies"])
async def user_sharings(backend: StrategyBackendInterface = Depends(get_backend)):
    return SharingsResponse(sharings=await backend.list_sharings())


@router.get("/get_user_apikeys", response_model=ApiKeysResponse, tags=["Strategies"])
async def get_user_apikeys(backend: StrategyBackendInterface = Depends(get_backend)):
    return ApiKeysResponse(user_apikeys=await backend.list_api_keys())


# ============================================================================
# Indicators
# ============================================================================

@router.get("/get_indicators_by_instance/{instance_id}", response_model=IndicatorsResponse, tags=["Indicators"])
async def get_indicators_by_instance(
    instance_id: str,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    return IndicatorsResponse(indicators=await backend.get_indicators_by_instance(instance_id))


@router.post("/add_indicator", response_model=Ack, tags=["Indicators"])
async def add_indicator(
    request: AddIndicatorRequest,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Attach an indicator to an instance. Re-adding the same key is acknowledged."""
    ack = await backend.add_indicator(request)
    logger.info("Indicator %s attached to instance %s", request.indicator_key, request.instance_id)
    return ack


@router.post("/remove_indicator", response_model=Ack, tags=["Indicators"])
async def remove_indicator(
    request: RemoveIndicatorRequest,
    backend: StrategyBackendInterface = Depends(get_backend),
):
    """Detach an indicator. Removing an unknown id is acknowledged."""
    return await backend.remove_indicator(request.id)
