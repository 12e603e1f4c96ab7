"""
Storage Layer - 会话存储层
负责会话数据的存储、过期与回收（内存/文件）
"""

from .base import SessionStorage, SessionRecord
from .errors import (
    SessionStoreError,
    SessionCorruptedError,
    SessionIOError,
    StorageInitializationError,
    InvalidSessionIdError,
    UnsupportedStoreError,
)
from .memory_storage import MemorySessionStorage
from .file_storage import FileSessionStorage
from .factory import StorageFactory, create_storage

__all__ = [
    "SessionStorage",
    "SessionRecord",
    "SessionStoreError",
    "SessionCorruptedError",
    "SessionIOError",
    "StorageInitializationError",
    "InvalidSessionIdError",
    "UnsupportedStoreError",
    "MemorySessionStorage",
    "FileSessionStorage",
    "StorageFactory",
    "create_storage",
]
