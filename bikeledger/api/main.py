"""
bikeledger.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn bikeledger.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from bikeledger.api.deps import get_config, get_engine  # noqa: E402
from bikeledger.api.routes.bikes import router as bikes_router  # noqa: E402
from bikeledger.api.routes.parts import router as parts_router  # noqa: E402
from bikeledger.api.routes.settings import router as settings_router  # noqa: E402
from bikeledger.database.engine import configure_retry_policy  # noqa: E402
from bikeledger.errors import (  # noqa: E402
    ConflictNotActive,
    InvalidTransfer,
    LedgerError,
    NotFound,
    NotInstalled,
    StoreConflict,
    StoreUnavailable,
    UnknownUser,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first; NotOwner is caught by NotFound.
_STATUS_BY_ERROR: tuple[tuple[type[LedgerError], int], ...] = (
    (ValidationError, 400),
    (InvalidTransfer, 400),
    (NotFound, 404),
    (UnknownUser, 404),
    (ConflictNotActive, 409),
    (NotInstalled, 409),
    (StoreConflict, 503),
    (StoreUnavailable, 503),
)


def status_for(exc: LedgerError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — apply retry tuning and warm the engine."""
    cfg = get_config()
    configure_retry_policy(
        max_attempts=cfg.tx_max_attempts,
        backoff_seconds=cfg.tx_backoff_seconds,
        max_backoff_seconds=cfg.tx_max_backoff_seconds,
    )
    engine = get_engine()
    logger.info("BikeLedger API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("BikeLedger API shutting down")


app = FastAPI(
    title="BikeLedger API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = {"error": exc.code, "detail": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query parameters answer like any other ``ValidationError``."""
    problems = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    fields = [p["loc"][-1] for p in problems if p["loc"]]
    message = "; ".join(f"{'.'.join(p['loc'])}: {p['msg']}" for p in problems)
    error = ValidationError(message or "Malformed request", fields=fields, errors=problems)
    return await ledger_error_handler(request, error)


app.include_router(bikes_router, prefix="/api")
app.include_router(parts_router, prefix="/api")
app.include_router(settings_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
