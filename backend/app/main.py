"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload

create_app() accepts a prebuilt ComplianceServices (tests, embedding);
otherwise the lifespan builds the SQL-backed stack from Settings.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import Settings, get_settings
from backend.app.core.database import build_engine, build_session_factory, close_db, init_db
from backend.app.core.errors import register_error_handlers
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.core.logging_config import get_logger, setup_logging
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.certification.catalogue import seed_catalogue
from backend.app.services import ComplianceServices, build_services
from backend.app.storage.sql import SqlDirectory, SqlStore

# ── API routers ──
from backend.app.api.v1.alerts import router as alert_router
from backend.app.api.v1.certifications import router as certification_router
from backend.app.api.v1.incidents import router as incident_router
from backend.app.api.v1.push import router as push_router
from backend.app.api.v1.training import router as training_router
from backend.app.api.v1.training import seed_router as training_seed_router
from backend.app.api.v1.venues import router as venue_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ComplianceServices] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        engine = None
        if services is None:
            engine = build_engine(settings)
            if not settings.is_production:
                await init_db(engine)
            sessions = build_session_factory(engine)
            store = SqlStore(sessions)
            if settings.SEED_TRAINING_CATALOGUE:
                await seed_catalogue(store)
            directory = SqlDirectory(sessions, settings.DEFAULT_VENUE_RADIUS_MILES)
            app.state.services = build_services(settings, store, directory)
        else:
            app.state.services = services

        yield

        # Let in-flight alert fan-outs finish before the store goes away
        await app.state.services.pipeline.drain()
        if engine is not None:
            await close_db(engine)
        logger.info("Shutting down %s", settings.APP_NAME)

    # ── Create application ──

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Hospitality compliance core. "
            "Incident intake, staff training and certification lifecycle, "
            "and geofenced Web Push alerts to nearby venue managers."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app, settings)

    # ── Register routers ──
    app.include_router(incident_router)
    app.include_router(training_router)
    if settings.is_development:
        app.include_router(training_seed_router)
    app.include_router(certification_router)
    app.include_router(push_router)
    app.include_router(alert_router)
    app.include_router(venue_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "incidents",
                "training",
                "certifications",
                "push",
                "alerts",
                "venues",
            ],
            "docs": "/docs",
        }

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — store and push transport."""
        report = await run_health_check(app.state.services)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
