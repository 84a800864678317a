"""
Multi-tenant SaaS Platform - Main FastAPI Application

This is the main entry point for the backend API service.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog
import uvicorn

from api import billing
from core.config import AppEnvironment, get_app_config
from core.events import EventBus
from core.exceptions import TenancyException
from core.logging import setup_logging
from database import SessionLocal, engine
from middleware.subscription_status import SubscriptionStatusMiddleware
from middleware.tenant_resolver import TenantMiddleware, TenantResolver, tenancy_error_response
from workers.dispatch import JobDispatcher

app_version = "1.0.0"

config = get_app_config()
setup_logging(json_output=config.environment == AppEnvironment.PRODUCTION)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting platform API", environment=config.environment.value)
    yield
    await app.state.dispatcher.close()
    await engine.dispose()
    logger.info("Platform API stopped")


def create_app(session_factory=SessionLocal, dispatcher: JobDispatcher = None,
               events: EventBus = None) -> FastAPI:
    """Build the application. Tests pass their own session factory and fakes."""
    app = FastAPI(
        title="Multi-tenant SaaS Platform",
        description="""
        Tenant resolution and isolation, subscription lifecycle, seat and
        usage metering, Stripe provisioning and catalog sync.
        """,
        version=app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan
    )

    app.state.dispatcher = dispatcher or JobDispatcher()
    app.state.events = events or EventBus()

    # Starlette runs the last added middleware first: tenant resolution wraps subscription gating.
    app.middleware("http")(SubscriptionStatusMiddleware(session_factory))
    app.middleware("http")(TenantMiddleware(TenantResolver(session_factory)))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.app_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TenancyException)
    async def tenancy_exception_handler(request: Request, exc: TenancyException):
        return tenancy_error_response(exc)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": "Multi-tenant SaaS Platform",
            "version": app_version,
            "status": "operational",
            "docs": "/api/docs"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": app_version,
            "checks": {}
        }

        try:
            from sqlalchemy import text
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
            health_status["checks"]["database"] = {"status": "healthy"}
        except Exception as e:
            health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
            health_status["status"] = "unhealthy"
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    app.include_router(billing.router, prefix="/api/v1")
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=config.environment == AppEnvironment.DEVELOPMENT
    )
