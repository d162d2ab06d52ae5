"""
FastAPI application for the billing reconciliation service
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admin_routes import router as admin_router
from .billing_routes import router as billing_router
from .config import config
from .db.engine import check_connection, init_db
from .errors import BillingError
from .exceptions import (
    billing_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .logging_config import RequestIDMiddleware, setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Staging/prod schemas are managed by alembic
    if config.ENV in ["dev", "test"]:
        init_db()

    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import start_scheduler, stop_scheduler
        start_scheduler()
        try:
            yield
        finally:
            stop_scheduler()
    else:
        yield


def create_app() -> FastAPI:
    """Build the application with logging, middleware, handlers and routers"""
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)

    app = FastAPI(
        title="Grading Assistant Billing API",
        version=config.BUILD_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(BillingError, billing_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(billing_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health():
        """Health check endpoint for load balancers and monitoring"""
        database_ok = check_connection()
        return {
            "status": "healthy" if database_ok else "degraded",
            "service": "grading-billing",
            "version": config.BUILD_VERSION,
            "database": "ok" if database_ok else "unavailable",
        }

    logger.info(f"Application created (env={config.ENV})")
    return app


app = create_app()
