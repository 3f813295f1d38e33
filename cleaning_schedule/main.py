import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_schedule,  # noqa: F401
)
from .config import FRONTEND_URL
from .database import Base, engine
from .domain.recurrence.exceptions import RecurrenceError
from .domain.recurrence.router import router as recurrences_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# HTTP status per RecurrenceError code
ERROR_STATUS_CODES = {
    "invalid_rule": 400,
    "invalid_transition": 409,
    "not_found": 404,
    "conflict": 409,
    "stale_execution": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Cleaning Schedule API", version="1.0.0", lifespan=lifespan)


def error_status_code(exc: RecurrenceError) -> int:
    if exc.code == "persistence_error":
        return 503 if getattr(exc, "transient", False) else 500
    return ERROR_STATUS_CODES.get(exc.code, 500)


@app.exception_handler(RecurrenceError)
async def recurrence_exception_handler(request: Request, exc: RecurrenceError):
    """Map recurrence errors to HTTP responses with a machine-readable code"""
    status_code = error_status_code(exc)
    if status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"⚠️ {request.method} {request.url.path} rejected ({exc.code}): {exc.message}")

    content = {"detail": exc.message, "code": exc.code}
    if status_code == 503:
        content["retryable"] = True
    return JSONResponse(status_code=status_code, content=content)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(recurrences_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
