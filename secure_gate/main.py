"""
secure_gate/main.py - FastAPI application entry point
Includes: lifespan management (logging, env validation, ledger store),
CORS, rate limiting, security headers, JSON error envelopes, ping endpoint.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from secure_gate.clients.ledger_store import build_store
from secure_gate.config import get_settings
from secure_gate.core import logging as app_logging
from secure_gate.core.errors import ConfigurationError, GateError
from secure_gate.core.logging import setup_logging
from secure_gate.core.rate_limiter import limiter
from secure_gate.routers import api, triggers
from secure_gate.services.cooldown_ledger import CooldownLedger

settings = get_settings()

APP_VERSION = "1.0.0"


# ──────────────────────────────────────────────────────────────────────────────
# Application Lifespan
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan: startup → yield → shutdown.
    Startup: initialize logging, report missing secrets, build the ledger.
    A missing store configuration does not stop the app; the cooldown
    endpoint answers 500 with the reason instead.
    """
    setup_logging(settings.log_level)
    logger.info("Secure gate starting up...")

    _validate_env()

    app.state.ledger = None
    app.state.ledger_error = None
    try:
        app.state.ledger = CooldownLedger(
            store=build_store(settings),
            cooldown=timedelta(minutes=settings.cooldown_minutes),
            retention=timedelta(minutes=settings.retention_minutes),
        )
    except ConfigurationError as exc:
        app.state.ledger_error = exc.message
        logger.critical(exc.message)

    logger.info("Startup complete.")
    yield
    store = getattr(app.state.ledger, "store", None)
    if store is not None and hasattr(store, "close"):
        store.close()
    logger.info("Shutting down secure gate.")


def _validate_env() -> None:
    """Log every secret that is missing. Affected endpoints answer 500."""
    required = [
        ("telegram_bot_token", "TELEGRAM_BOT_TOKEN"),
        ("telegram_chat_id", "TELEGRAM_CHAT_ID"),
        ("cron_secret", "CRON_SECRET"),
        ("token_secret", "TOKEN_SECRET"),
    ]
    if settings.store_backend == "supabase":
        required += [("supabase_url", "SUPABASE_URL"), ("supabase_key", "SUPABASE_KEY")]

    missing = [env_name for attr, env_name in required if not getattr(settings, attr, None)]
    if missing:
        logger.critical(f"Missing env vars: {', '.join(missing)}")
        logger.warning("App will start but affected endpoints will answer 500 until credentials are set.")


# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Secure Gate",
    description="Per-device cooldown ledger and notification forwarding for the secure zone page.",
    version=APP_VERSION,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url=None,
    lifespan=lifespan,
)

# ── Rate limiting - fastapi/slowapi ───────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(
    RateLimitExceeded,
    lambda req, exc: JSONResponse(
        status_code=429,
        content={"success": False, "error": "Rate limit exceeded. Slow down."},
    ),
)
app.add_middleware(SlowAPIMiddleware)

# ── CORS - the gate page may be served from any origin ───────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# ── Error envelopes: {"success": false, "error": ...} ─────────────────────────
@app.exception_handler(GateError)
async def gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
    if exc.status_code >= 500:
        app_logging.log_error("api", request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug(f"Rejected malformed body on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid JSON request body"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    app_logging.log_error("api", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc) or "Unknown error"},
    )


# ── Security headers middleware ───────────────────────────────────────────────
@app.middleware("http")
async def add_security_headers(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
    return response


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(api.router, prefix="/api", tags=["api"])
app.include_router(triggers.router, prefix="/trigger", tags=["triggers"])


@app.get("/api/ping", tags=["health"])
async def ping():
    """Keep-alive / health check. Does NOT touch the store or Telegram."""
    return {"status": "ok", "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("secure_gate.main:app", host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
