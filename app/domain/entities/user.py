"""Domain entity representing a notification recipient."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """Directory entry used to address a user on the email channel."""

    id: int | None
    name: str
    email: str
    is_active: bool = True
    created_at: datetime | None = None


__all__ = ["User"]
