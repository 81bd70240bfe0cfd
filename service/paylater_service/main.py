"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from paylater_service.core.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

# Log startup info
logger.info("Starting PayLater API...")
logger.info(f"Python version: {sys.version}")
logger.info(f"PORT env var: {os.environ.get('PORT', 'not set')}")
logger.info(f"DATABASE_URL set: {'DATABASE_URL' in os.environ}")
logger.info(f"Database URL (masked): {settings.DATABASE_URL_ASYNC[:30]}...")

from paylater_service.api.v1 import router as v1_router
from paylater_service.core.exceptions import PayLaterError
from paylater_service.db.session import engine
from paylater_service.jobs.expiry import expiry_sweep_loop
from paylater_service.schemas.common import ErrorResponse
from paylater_service.services.events import event_queue
from paylater_service.services.notifications import NotificationDispatcher

logger.info("All imports successful")


async def _cancel(task: "asyncio.Task[Any]") -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    http_client = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    dispatcher = NotificationDispatcher.from_settings(event_queue, http_client)
    tasks = [asyncio.create_task(dispatcher.run(), name="notification-dispatcher")]
    if settings.EXPIRY_SWEEP_ENABLED:
        tasks.append(asyncio.create_task(expiry_sweep_loop(), name="expiry-sweep"))

    logger.info("Application startup complete")
    yield
    # Shutdown
    logger.info("Application shutting down...")
    for task in tasks:
        await _cancel(task)
    await http_client.aclose()
    await engine.dispose()


app = FastAPI(
    title="PayLater API",
    description="Payment intermediary ledger for payment intents, transactions and refunds",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump())


@app.exception_handler(PayLaterError)
async def ledger_error_handler(request: Request, exc: PayLaterError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return _error_response(
        exc.status_code,
        ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        error = ErrorResponse(
            error_code=exc.detail.get("error_code", "ERROR"),
            message=exc.detail.get("message", ""),
            details=exc.detail.get("details", {}),
        )
    else:
        error = ErrorResponse(error_code="HTTP_ERROR", message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in error["loc"]], "message": error["msg"]}
        for error in exc.errors()
    ]
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        ErrorResponse(
            error_code="INVALID_REQUEST",
            message="Request validation failed",
            details={"errors": errors},
        ),
    )


# Include API routers
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
