"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from investigator.api.routes import router
from investigator.config import Settings, get_settings
from investigator.database import Base, SessionLocal, engine
from investigator.logging_config import configure_logging
# Import models to register them with SQLAlchemy Base
from investigator.models.audit import AuditEvent  # noqa: F401
from investigator.models.domain import Document, Task  # noqa: F401
from investigator.services.analysis_engine import AnalysisEngine, MockAnalysisEngine
from investigator.services.container import build_services

logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[sessionmaker] = None,
    analysis_engine: Optional[AnalysisEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    Without a session factory the configured database is used and its tables
    are created. Without an engine the mock engine answers.
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    if session_factory is None:
        Base.metadata.create_all(bind=engine)
        session_factory = SessionLocal

    services = build_services(
        session_factory,
        analysis_engine or MockAnalysisEngine(delay_seconds=settings.engine_delay_seconds),
        max_workers=settings.executor_max_workers,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.pipeline.shutdown(wait=False)

    app = FastAPI(
        title=settings.app_name,
        description="Document intake, task pipeline, data chat and audit trail for investigations.",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api", tags=["Investigation"])

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": settings.app_name}

    logger.info("%s %s ready (%s)", settings.app_name, settings.version, settings.environment)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
