"""
Storage Base - 存储层抽象接口
定义会话存储的统一接口，支持多种存储后端（内存、文件）
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class SessionRecord:
    """
    会话记录数据结构

    A record is live while ``now < expires_at``.
    """
    sid: str                                           # 会话唯一标识
    payload: Dict[str, Any] = field(default_factory=dict)
    expires_at: float = 0.0                            # POSIX 时间戳（秒）

    def is_expired(self, now: float) -> bool:
        """
        检查会话是否过期

        Args:
            now: current POSIX timestamp

        Returns:
            是否过期
        """
        return now >= self.expires_at

    @property
    def expires(self) -> datetime:
        """Absolute expiry as an aware UTC datetime"""
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def to_dict(self) -> dict:
        """
        转换为字典（用于序列化）

        Returns:
            on-disk document ``{sid, session, expires}``
        """
        return {
            "sid": self.sid,
            "session": self.payload,
            "expires": self.expires.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionRecord':
        """
        Create instance from an on-disk document

        Raises:
            KeyError, TypeError, ValueError: if the document is malformed
        """
        expires = datetime.fromisoformat(data["expires"])
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        payload = data["session"]
        if not isinstance(payload, dict):
            raise TypeError("session payload must be an object")
        return cls(
            sid=str(data["sid"]),
            payload=payload,
            expires_at=expires.timestamp(),
        )


class SessionStorage(ABC):
    """
    会话存储抽象接口

    定义统一的存储接口，支持多种后端实现：
    - MemorySessionStorage: 基于内存的存储，后台清理过期会话
    - FileSessionStorage: 每个会话一个文件，读取时惰性过期

    Every operation is a coroutine, even where no I/O happens, so callers never
    special-case a backend.
    """

    @abstractmethod
    async def get(self, sid: str) -> Optional[Dict[str, Any]]:
        """
        获取会话数据

        Args:
            sid: 会话ID

        Returns:
            会话数据，如果不存在或已过期返回 None
        """
        pass

    @abstractmethod
    async def set(self, sid: str, payload: Dict[str, Any]) -> None:
        """
        保存会话数据并刷新过期时间

        Args:
            sid: 会话ID
            payload: 会话数据
        """
        pass

    @abstractmethod
    async def destroy(self, sid: str) -> None:
        """
        删除会话，不存在时不报错

        Args:
            sid: 会话ID
        """
        pass

    @abstractmethod
    async def touch(self, sid: str, payload: Dict[str, Any]) -> None:
        """
        刷新已存在会话的数据和过期时间，不存在时不做任何操作

        Args:
            sid: 会话ID
            payload: 新的会话数据
        """
        pass

    @abstractmethod
    async def all(self) -> List[Tuple[str, Dict[str, Any]]]:
        """
        获取所有未过期会话

        Returns:
            (sid, payload) 列表
        """
        pass

    @abstractmethod
    async def length(self) -> int:
        """
        获取存储中的会话数量（可能包含尚未回收的过期会话）

        Returns:
            会话数量
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """
        清空所有会话
        """
        pass

    async def connect(self) -> None:
        """Prepare the backend for use"""
        pass

    async def close(self) -> None:
        """Release background work and resources"""
        pass

    async def health_check(self) -> bool:
        """
        健康检查

        Returns:
            存储后端是否健康
        """
        return True

    async def __aenter__(self):
        """支持 async with 语法"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """支持 async with 语法"""
        await self.close()
