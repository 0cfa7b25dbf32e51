"""Common utilities for signedlinks."""

from signedlinks.common.errors import MissingKeyError
from signedlinks.common.settings import Settings, get_settings

__all__ = [
    "MissingKeyError",
    "Settings",
    "get_settings",
]
