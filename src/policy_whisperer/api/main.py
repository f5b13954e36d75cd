"""Policy Whisperer API: FastAPI application.

Run:
    uvicorn policy_whisperer.api.main:app --reload
    # or
    policy-whisperer-api
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from policy_whisperer.api.chat import router as chat_router
from policy_whisperer.api.deps import get_db
from policy_whisperer.api.legislation import router as legislation_router
from policy_whisperer.api.routes import router
from policy_whisperer.api.schemas import HealthResponse
from policy_whisperer.config import settings
from policy_whisperer.core.errors import (
    InputError,
    NotFoundError,
    PolicyWhispererError,
    UnsupportedFileTypeError,
)
from policy_whisperer.ingestion.content import FETCH_TIMEOUT
from policy_whisperer.observability.logging import correlation_id, setup_logging
from policy_whisperer.observability.tracing import configure_tracing
from policy_whisperer.retrieval.llm import LLMClient
from policy_whisperer.storage.db import dispose_db, init_db

logger = logging.getLogger(__name__)

HEALTH_DB_TIMEOUT = 5  # seconds

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-request-id",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize DB and shared clients on startup, close them on shutdown."""
    setup_logging(json_format=settings.log_json, level=settings.log_level)

    try:
        configure_tracing(settings.mlflow_tracking_uri, settings.mlflow_experiment_name)
    except Exception as e:
        logger.warning("MLflow tracing unavailable: %s", e)

    # Log the database URL (redacted) for debugging deployment issues
    parsed = urlparse(settings.database_url)
    redacted_host = f"{parsed.hostname}:{parsed.port}" if parsed.port else parsed.hostname
    logger.info("Connecting to database at %s/%s", redacted_host, parsed.path.lstrip("/"))
    try:
        await asyncio.wait_for(init_db(), timeout=15)
        logger.info("Database initialized successfully")
    except asyncio.TimeoutError:
        logger.error("Database initialization timed out after 15s; API will start in degraded mode")
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        logger.error("Database initialization failed: %s; API will start in degraded mode", e)

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set, summaries and impact analysis will use fallbacks")
    app.state.llm = LLMClient.from_settings(settings)
    app.state.http_client = httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True)
    logger.info("Policy Whisperer API ready")
    yield
    logger.info("Shutting down")
    await app.state.http_client.aclose()
    await app.state.llm.aclose()
    await dispose_db()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Set correlation ID from X-Request-ID header or generate a new one."""

    async def dispatch(self, request: Request, call_next):
        cid = request.headers.get("x-request-id", str(uuid.uuid4()))
        token = correlation_id.set(cid)
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = cid
            return response
        finally:
            correlation_id.reset(token)


class PreflightMiddleware(BaseHTTPMiddleware):
    """Answer every OPTIONS request with 200 and permissive CORS headers."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        return await call_next(request)


def _status_for(exc: PolicyWhispererError) -> int:
    if isinstance(exc, UnsupportedFileTypeError):
        return 415
    if isinstance(exc, InputError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    return 500


async def policy_error_handler(request: Request, exc: PolicyWhispererError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)}, headers=CORS_HEADERS)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return JSONResponse(status_code=400, content={"error": "; ".join(problems)}, headers=CORS_HEADERS)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers={**CORS_HEADERS, **(exc.headers or {})},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"}, headers=CORS_HEADERS)


app = FastAPI(
    title="Policy Whisperer",
    description="AI summaries of policy documents, document chat, "
    "and state-by-state legislation impact analysis.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(PreflightMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(PolicyWhispererError, policy_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

app.include_router(router)
app.include_router(chat_router)
app.include_router(legislation_router)


@app.get("/health", response_model=HealthResponse)
async def health(session: AsyncSession = Depends(get_db)):
    """Health check: verifies DB connectivity and LLM configuration."""
    checks = {}
    try:
        await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=HEALTH_DB_TIMEOUT)
        checks["database"] = "ok"
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        checks["database"] = f"error: {e or type(e).__name__}"

    checks["llm"] = "configured" if settings.openai_api_key else "missing_api_key"
    checks["mapbox"] = "configured" if settings.mapbox_public_token else "missing_token"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return HealthResponse(status=status, checks=checks)


def run():
    """Entry point for `policy-whisperer-api` console script."""
    uvicorn.run("policy_whisperer.api.main:app", host="0.0.0.0", port=8000, reload=False)
