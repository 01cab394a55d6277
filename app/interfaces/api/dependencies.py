"""FastAPI dependency utilities."""

from collections.abc import Generator

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.application.services import DispatchEngine
from app.infrastructure.database import SessionLocal


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """Return the session factory the application was created with."""

    return getattr(request.app.state, "session_factory", None) or SessionLocal


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a database session and close it afterwards."""

    db = get_session_factory(request)()
    try:
        yield db
    finally:
        db.close()


def get_dispatch_engine(request: Request) -> DispatchEngine:
    """Return the running dispatch engine or fail with 503 while it is unavailable."""

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="El motor de notificaciones no está disponible",
        )
    return runtime.engine
