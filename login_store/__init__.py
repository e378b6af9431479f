"""Login store - shared cache, distributed locks and batch dispatch for the login service.

This package provides the data layer used by login handlers: a Redis-backed
cache facade with quorum-based distributed locking, and a periodic scheduler
that flushes accumulated login events to a downstream queue.
"""

__version__ = "0.1.0"
__author__ = "Login Store Contributors"

from login_store.config import Settings, get_settings, load_settings_from_file, set_settings

__all__ = [
    "Settings",
    "__version__",
    "get_settings",
    "load_settings_from_file",
    "set_settings",
]
