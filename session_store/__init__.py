"""
Session Store - pluggable session storage with TTL enforcement.
"""

from .storage import (
    SessionRecord,
    SessionStorage,
    MemorySessionStorage,
    FileSessionStorage,
    StorageFactory,
)
from .services.session_manager import Session, SessionManager, get_session_manager

__all__ = [
    "SessionRecord",
    "SessionStorage",
    "MemorySessionStorage",
    "FileSessionStorage",
    "StorageFactory",
    "Session",
    "SessionManager",
    "get_session_manager",
]

__version__ = "0.1.0"
