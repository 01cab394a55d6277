import logging
from contextlib import asynccontextmanager
from typing import Callable

from anyio import to_thread
from anyio.from_thread import BlockingPortal
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.application.services import NotificationRuntime, build_runtime
from app.infrastructure.database import (
    SessionLocal,
    build_session_factory,
    engine as default_engine,
    initialize_database,
)
from app.infrastructure.notifications import notification_manager
from app.interfaces.api.routes import register_routes

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[sessionmaker[Session]], NotificationRuntime]


def _default_runtime(session_factory: sessionmaker[Session]) -> NotificationRuntime:
    return build_runtime(session_factory=session_factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Inicializa la base de datos y los servicios de envío; los detiene al cerrar."""

    initialize_database(app.state.database_engine)
    async with BlockingPortal() as portal:
        notification_manager.attach_portal(portal)
        runtime = app.state.runtime_factory(app.state.session_factory)
        runtime.start()
        app.state.runtime = runtime
        try:
            yield
        finally:
            app.state.runtime = None
            # Draining joins worker threads; keep the loop free for their last websocket sends.
            await to_thread.run_sync(runtime.stop)
            notification_manager.detach_portal()
    if app.state.database_engine is default_engine:
        default_engine.dispose()


def create_app(
    *,
    database_engine: Engine | None = None,
    runtime_factory: RuntimeFactory | None = None,
) -> FastAPI:
    """Crea y configura la aplicación principal de FastAPI."""

    app = FastAPI(title="Notification Dispatch", lifespan=lifespan)
    app.state.database_engine = database_engine or default_engine
    app.state.session_factory = (
        build_session_factory(database_engine) if database_engine is not None else SessionLocal
    )
    app.state.runtime_factory = runtime_factory or _default_runtime
    app.state.runtime = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:4200"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app


app = create_app()
