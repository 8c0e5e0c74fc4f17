"""
Hunt Schedule API Server

FastAPI server for booking respawn slots, reviewing requests and tracking points.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from sqlalchemy.exc import DBAPIError
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from huntschedule.api.routes import router, limiter as routes_limiter
from huntschedule.database import db
from huntschedule.database.init_defaults import init_defaults
from huntschedule.services.booking_core import is_retryable
from huntschedule.services.errors import ErrorCode

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Hunt Schedule API...")

    # Create missing tables; Alembic migrations remain the source of truth
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    try:
        await init_defaults()
        logger.info("✓ Default values initialized")
    except Exception as e:
        logger.error(f"Failed to initialize defaults: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Hunt Schedule API...")
    await db.engine.dispose()


app = FastAPI(
    title="Hunt Schedule API",
    description="API for booking respawn slots and managing the point ledger",
    version="0.1.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(DBAPIError)
async def database_error_handler(request: Request, exc: DBAPIError):
    """Deadlocks and serialization failures are retryable; anything else is a server error."""
    if not is_retryable(exc):
        raise exc
    logger.warning(f"{request.method} {request.url.path} aborted by the database, retryable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": {"code": ErrorCode.TRANSACTION_RETRY, "message": "Please retry", "params": {}}},
    )


# Add CORS middleware, origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
