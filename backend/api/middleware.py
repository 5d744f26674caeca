"""
Middleware for the reference strategy API.

Provides:
- Request correlation IDs for log tracing
- Request/response timing
- Optional bearer token check
"""
import logging
import secrets
import time
import uuid
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from config.settings import get_settings
from services.logging_service import correlation_id_ctx

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/", "/status", "/openapi.json", "/docs", "/docs/oauth2-redirect", "/redoc"}


# ── Correlation ID + Timing Middleware ───────────────────────────────────────
async def correlation_id_middleware(request: Request, call_next) -> Response:
    """
    Attach a unique correlation ID to every request.
    - Sets X-Request-ID response header
    - Populates the logging correlation id for structured logging
    - Logs request timing
    """
    rid = request.headers.get("x-request-id", "").strip()
    if not rid:
        rid = uuid.uuid4().hex[:16]
    token = correlation_id_ctx.set(rid)
    start = time.monotonic()
    try:
        response: Response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = rid
        # DEBUG for reads, INFO for writes
        log_level = logging.DEBUG if request.method == "GET" else logging.INFO
        logger.log(
            log_level,
            "req=%s method=%s path=%s status=%d duration_ms=%.1f",
            rid,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response
    except Exception:
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.exception(
            "req=%s method=%s path=%s duration_ms=%.1f unhandled_exception",
            rid,
            request.method,
            request.url.path,
            elapsed_ms,
        )
        raise
    finally:
        correlation_id_ctx.reset(token)


def _extract_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


async def bearer_auth_middleware(request: Request, call_next) -> Response:
    """
    Require ``STRATWIZ_API_TOKEN`` as bearer token when one is configured.
    Public paths and CORS preflights pass through.
    """
    expected = (get_settings().api_token or "").strip()
    if not expected or request.method == "OPTIONS" or request.url.path in PUBLIC_PATHS:
        return await call_next(request)

    provided = _extract_bearer_token(request)
    if not provided or not secrets.compare_digest(provided, expected):
        logger.warning("Rejected %s %s: missing or invalid bearer token", request.method, request.url.path)
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
    return await call_next(request)
