"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, sync
from core.config import settings
from core.database import build_database
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.extractors.firebase_extractor import FirebaseRecordSource
from ingestion.post_sync import PostSyncCaller
from ingestion.scheduler import SyncScheduler
from ingestion.status_reporter import StatusReporter

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Retail Sync Engine API",
    description="Resumable bulk sync from the Firebase document store into the relational store",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    """Build shared components once per process"""
    logger.info("Starting Retail Sync Engine API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    engine, session_factory = build_database(settings.DATABASE_URL, pool_size=settings.DATABASE_POOL_SIZE)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.source = FirebaseRecordSource(
        settings.FIREBASE_DATABASE_URL,
        auth_token=settings.FIREBASE_AUTH_TOKEN,
        timeout=settings.CALL_TIMEOUT_SECONDS
    )
    app.state.status_reporter = StatusReporter(
        settings.STATUS_ENDPOINT_URL,
        timeout=settings.STATUS_TIMEOUT_SECONDS
    )
    app.state.post_sync_caller = PostSyncCaller(
        settings.POST_SYNC_BASE_URL,
        timeout=settings.POST_SYNC_TIMEOUT_SECONDS
    )
    app.state.scheduler = None

    # Start Scheduler
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = SyncScheduler(
            settings,
            engine,
            session_factory,
            source=app.state.source,
            status_reporter=app.state.status_reporter,
            post_sync_caller=app.state.post_sync_caller
        )
        app.state.scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Retail Sync Engine API")
    if app.state.scheduler is not None:
        app.state.scheduler.stop()
    await app.state.source.close()
    await app.state.status_reporter.close()
    await app.state.post_sync_caller.close()
    await app.state.engine.dispose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Retail Sync Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "start": "/sync/start",
            "resume": "/sync/resume",
            "runs": "/sync/runs"
        }
    }
