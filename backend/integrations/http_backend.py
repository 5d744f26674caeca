"""
HTTP strategy backend.

Talks to the strategy REST backend with an ``httpx.AsyncClient``. Error
responses and malformed bodies are translated into ``BackendError`` so callers
never see httpx or pydantic exceptions.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar
import logging

import httpx
from pydantic import BaseModel, ValidationError

from api.models import (
    Ack,
    AddIndicatorRequest,
    ApiKey,
    ApiKeysResponse,
    Indicator,
    IndicatorsResponse,
    RemoveIndicatorRequest,
    Sharing,
    SharingsResponse,
    StrategiesResponse,
    StrategyInstancePayload,
    StrategyTemplate,
    StrategyUpdatePayload,
    Symbol,
    SymbolsResponse,
    dump_wire,
)
from config.settings import get_settings
from services.strategy_backend import AuthenticationError, BackendError, StrategyBackendInterface

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error text from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error", "detail", "message"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


def _parse(model: Type[ModelT], body: Any) -> ModelT:
    """Validate a response body, reporting malformed payloads as a bad gateway."""
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        logger.error("Malformed %s from backend: %s", model.__name__, exc)
        raise BackendError(502, f"Malformed {model.__name__} from backend") from exc


class HttpStrategyBackend(StrategyBackendInterface):
    """
    REST implementation of the strategy backend.

    Usage:
        backend = HttpStrategyBackend()
        symbols = await backend.search_symbols("key-1", "btc")
        await backend.close()
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP backend.

        Args:
            base_url: Backend base URL (default: settings)
            token: Bearer token (default: settings)
            timeout: Request timeout in seconds (default: settings)
            transport: Custom httpx transport, e.g. ASGITransport in tests
        """
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        token = token if token is not None else settings.api_token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.api_timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send one request and return its decoded JSON body.

        Raises:
            AuthenticationError: on HTTP 401
            BackendError: on any other non-2xx status or transport failure
        """
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise BackendError(0, f"Backend unreachable: {exc}") from exc

        if response.status_code == 401:
            logger.warning("%s %s rejected: session expired or invalid", method, path)
            raise AuthenticationError()
        if response.is_error:
            detail = _error_detail(response)
            logger.error("%s %s returned %d: %s", method, path, response.status_code, detail)
            raise BackendError(response.status_code, detail)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(response.status_code, "Backend returned a non-JSON body") from exc

    # ------------------------------------------------------------------
    # Symbols and lookups
    # ------------------------------------------------------------------

    async def search_symbols(self, api_key_id: str, query: str) -> List[Symbol]:
        body = await self._request("GET", "/get_symbols_by_api", params={"id": api_key_id, "query": query})
        return _parse(SymbolsResponse, body).symbols

    async def list_strategy_templates(self) -> List[StrategyTemplate]:
        body = await self._request("GET", "/get_strategies")
        return _parse(StrategiesResponse, body).strategies

    async def list_sharings(self) -> List[Sharing]:
        body = await self._request("GET", "/user_sharings")
        return _parse(SharingsResponse, body).sharings

    async def list_api_keys(self) -> List[ApiKey]:
        body = await self._request("GET", "/get_user_apikeys")
        return _parse(ApiKeysResponse, body).user_apikeys

    async def get_strategy_parameters(self, strategy_id: str) -> Optional[StrategyTemplate]:
        try:
            body = await self._request("POST", "/get_strategy_parameters", json={"id": strategy_id})
        except BackendError as exc:
            if exc.status_code == 404:
                return None
            raise
        if isinstance(body, dict) and isinstance(body.get("strategy"), dict):
            body = body["strategy"]
        if not body:
            return None
        return _parse(StrategyTemplate, body)

    async def get_indicators_by_instance(self, instance_id: str) -> List[Indicator]:
        body = await self._request("GET", f"/get_indicators_by_instance/{instance_id}")
        return _parse(IndicatorsResponse, body).indicators

    # ------------------------------------------------------------------
    # Instances and indicators
    # ------------------------------------------------------------------

    async def create_strategy_instance(self, payload: StrategyInstancePayload) -> str:
        body = await self._request("POST", "/save_instance", json=dump_wire(payload))
        instance_id = (body.get("instance_id") or body.get("id")) if isinstance(body, dict) else None
        if not instance_id:
            raise BackendError(502, "Backend did not return an instance id")
        return str(instance_id)

    async def update_strategy_instance(self, payload: StrategyUpdatePayload) -> str:
        body = await self._request("POST", "/update_strategy_parameters", json=dump_wire(payload))
        if isinstance(body, dict) and body.get("id"):
            return str(body["id"])
        return payload.id

    async def add_indicator(self, request: AddIndicatorRequest) -> Ack:
        body = await self._request("POST", "/add_indicator", json=dump_wire(request))
        return _parse(Ack, body or {})

    async def remove_indicator(self, indicator_id: str) -> Ack:
        body = await self._request(
            "POST", "/remove_indicator", json=dump_wire(RemoveIndicatorRequest(id=indicator_id))
        )
        return _parse(Ack, body or {})
