"""
Strategy Wizard reference API.
FastAPI application serving the strategy backend endpoints from the
in-memory paper backend, for local development and client tests.

Features:
- Request correlation IDs for log tracing
- Structured JSON logging
- Optional bearer token auth (STRATWIZ_API_TOKEN)
- Backend errors returned as {"error": ...} with the backend status code
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
import logging
import uvicorn

from api.middleware import bearer_auth_middleware, correlation_id_middleware
from api.models import StatusResponse
from api.routes import router as api_router
from config.settings import get_settings
from services.logging_service import configure_logging
from services.strategy_backend import BackendError

logger = logging.getLogger(__name__)

SERVICE_NAME = "Strategy Wizard Backend"
SERVICE_VERSION = "0.1.0"


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    """Configure logging on startup."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_directory)
    logger.info("Strategy wizard API starting up (env=%s)", settings.environment)
    try:
        yield
    finally:
        logger.info("Strategy wizard API shut down")


app = FastAPI(
    title="Strategy Wizard API",
    description="Reference strategy backend for the strategy creation wizard",
    version=SERVICE_VERSION,
    lifespan=_lifespan,
    openapi_tags=[
        {"name": "Symbols", "description": "Symbol search per API key"},
        {"name": "Instances", "description": "Strategy instance create and update"},
        {"name": "Strategies", "description": "Strategy templates, sharings and API keys"},
        {"name": "Indicators", "description": "Indicators attached to instances"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:1420", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BackendError)
async def backend_error_handler(_request: Request, exc: BackendError):
    """Surface backend failures with their own status code."""
    status_code = exc.status_code if 400 <= exc.status_code < 600 else 502
    return JSONResponse(status_code=status_code, content={"error": exc.detail})


@app.middleware("http")
async def _bearer_auth(request: Request, call_next):
    return await bearer_auth_middleware(request, call_next)


# ── Correlation ID middleware (outermost - registered last) ──────────────────
@app.middleware("http")
async def _correlation_id(request: Request, call_next):
    return await correlation_id_middleware(request, call_next)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Strategy Wizard API"}


@app.get("/status", response_model=StatusResponse)
async def status():
    """Liveness check."""
    return StatusResponse(status="healthy", service=SERVICE_NAME, version=SERVICE_VERSION)


app.include_router(api_router, prefix="/api")


if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
    )
