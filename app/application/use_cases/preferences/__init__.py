"""Use cases for managing channel preferences."""

from .get_preferences import get_preferences
from .set_preference import set_preference

__all__ = ["get_preferences", "set_preference"]
