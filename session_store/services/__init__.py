"""Session services."""

from .session_manager import Session, SessionManager, get_session_manager

__all__ = ["Session", "SessionManager", "get_session_manager"]
