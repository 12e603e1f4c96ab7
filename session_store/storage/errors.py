"""
Storage errors - 会话存储层异常

Absence of a session is never an error: lookups return None and deletes are no-ops.
"""

from typing import Optional


class SessionStoreError(Exception):
    """Base class for session store failures"""

    def __init__(self, message: str, operation: str, sid: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.sid = sid


class SessionCorruptedError(SessionStoreError):
    """Raised when stored session content cannot be parsed"""
    pass


class SessionIOError(SessionStoreError):
    """Raised when a filesystem operation fails for a reason other than a missing file"""
    pass


class StorageInitializationError(SessionStoreError):
    """Raised when the storage location cannot be created or accessed"""
    pass


class InvalidSessionIdError(ValueError):
    """Raised when a session id cannot be mapped to a storage key"""
    pass


class UnsupportedStoreError(ValueError):
    """Raised when the store selector is given an unknown store type"""
    pass
