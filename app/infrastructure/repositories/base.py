"""Shared helpers for repository implementations."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(session: Session, action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures raised inside the block into ``StoreUnavailable``."""

    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Store operation '%s' failed: %s", action, exc)
        raise StoreUnavailable(f"{action} failed: {exc}") from exc


__all__ = ["store_errors"]
