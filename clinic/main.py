import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .clock import Clock, clinic_clock
from .config import Settings, get_settings
from .core.logging import setup_logging
from .database import build_engine, build_session_factory, create_tables
from .routers import appointments, auth, logs
from .security import configure_field_ciphers
from .sessions import build_session_store

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None, session_store=None) -> FastAPI:
    """Build the application with its own engine, session store and clock."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    configure_field_ciphers(settings)
    engine = build_engine(settings.database_url, echo=settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_tables(engine)
        logger.info(f"{settings.app_name} started ({settings.environment})")
        yield
        engine.dispose()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.clock = clock or clinic_clock(settings.clinic_timezone)
    app.state.session_store = session_store or build_session_store(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(appointments.router, prefix="/api/v1")
    app.include_router(logs.router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    def health_check():
        return {"status": "ok"}

    return app


def run():
    settings = get_settings()
    uvicorn.run(
        "clinic.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    run()
