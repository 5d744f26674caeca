"""
API Data Models and Contracts.
Defines Pydantic models for the strategy backend request/response payloads.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class IndicatorSide(str, Enum):
    """Side an indicator votes on."""
    BUY = "buy"
    SELL = "sell"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Symbols
# ============================================================================

class Symbol(BaseModel):
    """Tradable symbol as returned by the symbol search endpoint."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    symbol: str = Field(..., description="Canonical symbol string, e.g. BTC-USDT")
    name: Optional[str] = Field(default=None, description="Human readable pair name")
    base_asset: Optional[str] = Field(default=None, alias="baseAsset")
    quote_asset: Optional[str] = Field(default=None, alias="quoteAsset")
    type: Optional[str] = Field(default=None, description="Asset class, e.g. crypto")
    is_default: bool = Field(default=False, alias="isDefault")
    icon: str = Field(default="")


# ============================================================================
# Indicators
# ============================================================================

class Indicator(BaseModel):
    """
    Child entity of a strategy instance.

    Two indicators are the same indicator iff their ids match; the other
    fields do not take part in identity. Numeric ids sent by the backend are
    kept as strings.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True, coerce_numbers_to_str=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    mandatory: bool = False
    side: IndicatorSide = Field(..., alias="type")
    created_at: str = Field(default_factory=_utc_now_iso)
    key: Optional[str] = Field(default=None, description="Copy-paste key used in alert messages")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class AddIndicatorRequest(BaseModel):
    """Body of the add_indicator call."""
    name: str
    instance_id: str
    mandatory: bool = False
    indicator_key: str
    type: IndicatorSide

    @classmethod
    def for_indicator(cls, indicator: Indicator, instance_id: str) -> "AddIndicatorRequest":
        return cls(
            name=indicator.name,
            instance_id=instance_id,
            mandatory=indicator.mandatory,
            indicator_key=indicator.id,
            type=indicator.side,
        )


class RemoveIndicatorRequest(BaseModel):
    """Body of the remove_indicator call."""
    id: str


class Ack(BaseModel):
    """Generic acknowledgement returned by mutating calls."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    success: bool = True
    message: str = ""
    id: Optional[str] = None


# ============================================================================
# Lookups
# ============================================================================

# Backend records may carry integer primary keys
RECORD_CONFIG = ConfigDict(coerce_numbers_to_str=True)


class ApiKey(BaseModel):
    """Exchange API key registered by the user."""
    model_config = RECORD_CONFIG

    api_key_id: str
    name: str = ""
    exchange: Optional[str] = None


class StrategyTemplate(BaseModel):
    """Saved per-side strategy parameters."""
    model_config = RECORD_CONFIG

    id: str
    name: str = ""
    side: Optional[IndicatorSide] = None
    percent: Optional[Any] = None
    condition_limit: Optional[Any] = None
    interval: Optional[Any] = None
    simultaneous_operations: Optional[Any] = None
    tp: Optional[float] = None
    sl: Optional[float] = None


class Sharing(BaseModel):
    """Sharing record of a strategy instance."""
    model_config = RECORD_CONFIG

    id: str
    name: str = ""
    instance_id: Optional[str] = None


class StrategyInstance(BaseModel):
    """Existing strategy instance opened for editing."""
    model_config = RECORD_CONFIG

    id: str
    name: str
    symbol: str
    api_key_id: str
    strategy_buy: Optional[str] = None
    strategy_sell: Optional[str] = None
    strategy_uuid: Optional[str] = None
    description: str = ""


# ============================================================================
# Create / update payloads
# ============================================================================

class SideStrategy(BaseModel):
    """Sizing parameters for one side of a strategy instance."""
    side: IndicatorSide
    percent: Any = ""
    condition_limit: Any = ""
    interval: Any = ""
    simultaneous_operations: Any = ""
    name: Optional[str] = None
    strategy: Optional[str] = None
    tp: Optional[float] = None
    sl: Optional[float] = None


class StrategyInstancePayload(BaseModel):
    """Body of the create call."""
    name: str
    api_key: str
    symbol: str
    strategies: List[SideStrategy] = Field(default_factory=list)
    hash: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: int = 1
    created_at: str = Field(default_factory=_utc_now_iso)
    description: str = ""


class StrategyUpdatePayload(BaseModel):
    """Body of the update call. Carries the buy side parameters."""
    id: str
    name: str
    side: IndicatorSide
    percent: Any = ""
    condition_limit: Any = ""
    interval: Any = ""
    simultaneous_operations: Any = ""
    tp: Optional[float] = None
    sl: Optional[float] = None


class EntityRef(BaseModel):
    """Identifier of a backend record (instance or side strategy)."""
    id: str


# ============================================================================
# Response envelopes
# ============================================================================

class SymbolsResponse(BaseModel):
    symbols: List[Symbol] = Field(default_factory=list)


class IndicatorsResponse(BaseModel):
    indicators: List[Indicator] = Field(default_factory=list)


class StrategiesResponse(BaseModel):
    strategies: List[StrategyTemplate] = Field(default_factory=list)


class SharingsResponse(BaseModel):
    sharings: List[Sharing] = Field(default_factory=list)


class ApiKeysResponse(BaseModel):
    user_apikeys: List[ApiKey] = Field(default_factory=list)


class SaveInstanceResponse(BaseModel):
    instance_id: str
    id: str


class StatusResponse(BaseModel):
    """Backend status response."""
    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")


def dump_wire(model: BaseModel) -> Dict[str, Any]:
    """Serialize a model the way the REST backend expects it (aliases, JSON types)."""
    return model.model_dump(mode="json", by_alias=True)
