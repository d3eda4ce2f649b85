"""
FastAPI Application Entry Point.

This is the main application file for the Parcel Tracking Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_trace import ParcelTrace
from backend.app.models.abnormal_record import AbnormalRecord
from backend.app.models.transport_task import TransportTask, TransportTaskParcel
from backend.app.models.delivery_task import DeliveryTask, DeliveryTaskParcel
from backend.app.models.audit_log import AuditLog
from backend.app.models.dlq import DeadLetterQueue

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables on startup and release the pool on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel tracking across sorting, transport and delivery",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to Parcel Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
    }
