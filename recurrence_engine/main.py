"""Main FastAPI application for the recurrence engine."""
import logging
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from recurrence_engine import __version__
from recurrence_engine.config import Settings, get_settings
from recurrence_engine.middleware.cors import add_cors_middleware
from recurrence_engine.db.config import create_db_engine
from recurrence_engine.db.init import init_db
from recurrence_engine.routers import recurrence_router
from recurrence_engine.services.recurrence_processor import RecurrenceProcessor
from recurrence_engine.services.recurrence_store import SQLRecurrenceStore
from recurrence_engine.services.scheduler import RecurrenceScheduler

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """Build the application and wire store, processor and scheduler onto ``app.state``."""
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.database_url)

    app = FastAPI(
        title="Recurrence Engine API",
        description="Materializes recurring tasks from repeat rules on a background schedule",
        version=__version__,
    )
    add_cors_middleware(app)

    store = SQLRecurrenceStore(engine)
    processor = RecurrenceProcessor(store, backfill_cap=settings.backfill_cap)
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.scheduler = RecurrenceScheduler(
        processor,
        interval_seconds=settings.interval_seconds,
        run_on_start=settings.run_on_start,
    )

    @app.on_event("startup")
    async def startup_event():
        """Create tables, then start the scheduler once the database is ready."""
        init_db(app.state.engine)
        if settings.scheduler_enabled:
            app.state.scheduler.start()
        else:
            logger.info("Recurrence scheduler disabled; use POST /api/recurrence/process to run manually")
        logger.info("Application startup complete.")

    @app.on_event("shutdown")
    def shutdown_event():
        """Stop the scheduler, draining any in-flight run."""
        app.state.scheduler.stop()

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "scheduler_running": app.state.scheduler.running,
        }

    app.include_router(recurrence_router, prefix="/api/recurrence")
    return app


logging.basicConfig(level=get_settings().log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "recurrence_engine.main:app",
        host="0.0.0.0",
        port=8000,
    )
