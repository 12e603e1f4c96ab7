"""
Session Manager - 会话管理器
在存储后端之上提供会话加载、读写、续期和销毁
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..config.settings import get_settings
from ..storage.base import SessionStorage
from ..storage.factory import create_storage

logger = logging.getLogger(__name__)

# 会话负载中保存过期元数据的键
EXPIRY_KEY = "expiry"


class Session:
    """
    会话包装对象

    Attributes:
        sid: 会话ID
        data: 会话数据（修改后需要 save() 才会持久化）
    """

    def __init__(self, manager: "SessionManager", sid: str, data: Dict[str, Any]):
        self._manager = manager
        self.sid = sid
        self.data = data

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    @property
    def expires(self) -> Optional[datetime]:
        """会话过期时间（来自过期元数据）"""
        expiry = self.data.get(EXPIRY_KEY)
        if isinstance(expiry, dict):
            return expiry.get("expires")
        return None

    async def save(self) -> None:
        """持久化会话数据"""
        await self._manager.store.set(self.sid, self.data)

    async def touch(self) -> None:
        """刷新过期时间并续期存储中的记录"""
        self.data[EXPIRY_KEY] = self._manager.expiry_metadata()
        await self._manager.store.touch(self.sid, self.data)

    async def destroy(self) -> None:
        """从存储删除会话"""
        await self._manager.store.destroy(self.sid)

    def __repr__(self) -> str:
        return f"Session(sid={self.sid[:8]}..., keys={sorted(self.data)})"


class SessionManager:
    """
    会话管理器

    职责：
    1. 根据配置选择并初始化存储后端
    2. 生成会话ID，加载或创建会话
    3. 会话数据读写、续期和销毁
    4. 全量会话查询和清理

    Example:
        async with SessionManager(store_type="file", store_options={"ttl": 3600}) as mgr:
            session = await mgr.load_session()
            await mgr.set(session, "user_id", "u-1")
    """

    def __init__(
        self,
        store_type: str = "memory",
        store_options: Optional[Dict[str, Any]] = None,
        max_age: float = 86400,
        storage: Optional[SessionStorage] = None
    ):
        """
        初始化会话管理器

        Args:
            store_type: 存储类型（memory / file）
            store_options: 传递给存储后端的参数
            max_age: 会话过期元数据中的有效期（秒）
            storage: 已创建的存储后端（可选，优先于 store_type）
        """
        self.store_type = store_type
        self.store_options = store_options or {}
        self.max_age = max_age
        self.storage = storage

        logger.info(f"会话管理器已初始化（store={store_type}）")

    async def initialize(self) -> None:
        """初始化存储后端"""
        if self.storage is None:
            self.storage = await create_storage(self.store_type, self.store_options)
        else:
            await self.storage.connect()
        logger.info(f"✅ 会话存储初始化成功: {type(self.storage).__name__}")

    async def close(self) -> None:
        """关闭存储后端"""
        if self.storage is not None:
            await self.storage.close()
            logger.info("会话存储已关闭")

    @property
    def store(self) -> SessionStorage:
        if self.storage is None:
            raise RuntimeError("Session store not initialized. Call initialize() first.")
        return self.storage

    @staticmethod
    def generate_session_id() -> str:
        """
        生成会话ID

        Returns:
            64 位十六进制随机字符串
        """
        return secrets.token_hex(32)

    def expiry_metadata(self) -> Dict[str, Any]:
        return {
            "original_max_age": self.max_age,
            "expires": datetime.now(timezone.utc) + timedelta(seconds=self.max_age),
        }

    async def load_session(self, session_id: Optional[str] = None) -> Session:
        """
        加载会话，不存在时创建空会话并保存

        Args:
            session_id: 会话ID（可选，默认生成新ID）

        Returns:
            Session 对象
        """
        sid = session_id or self.generate_session_id()
        data = await self.store.get(sid)

        if data is None:
            data = {EXPIRY_KEY: self.expiry_metadata()}
            await self.store.set(sid, data)
            logger.info(f"创建新会话: {sid[:8]}...")
        elif EXPIRY_KEY not in data:
            data[EXPIRY_KEY] = self.expiry_metadata()

        return Session(self, sid, data)

    async def set(self, session: Optional[Session], key: str, value: Any) -> None:
        """设置会话字段并持久化"""
        if session is None:
            raise RuntimeError("Session not initialized")
        session[key] = value
        await session.save()

    async def get(self, session: Optional[Session], key: str) -> Any:
        """读取会话字段"""
        if session is None:
            raise RuntimeError("Session not initialized")
        return session.get(key)

    async def destroy(self, session: Optional[Session]) -> None:
        """销毁会话"""
        if session is None:
            raise RuntimeError("Session not initialized")
        await session.destroy()
        logger.info(f"删除会话: {session.sid[:8]}...")

    async def touch(self, session: Optional[Session]) -> None:
        """续期会话并保存"""
        if session is None:
            raise RuntimeError("Session not initialized")
        await session.touch()
        await session.save()

    async def get_all_sessions(self) -> List[Tuple[str, Dict[str, Any]]]:
        """获取所有未过期会话"""
        return await self.store.all()

    async def count_sessions(self) -> int:
        """获取存储中的会话数量（可能包含尚未回收的过期会话）"""
        return await self.store.length()

    async def clear_all_sessions(self) -> None:
        """清空所有会话"""
        await self.store.clear()
        logger.info("已清空所有会话")

    async def __aenter__(self):
        """支持 async with 语法"""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """支持 async with 语法"""
        await self.close()


# 单例实例
_session_manager_instance: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """
    获取会话管理器单例（根据 Settings 配置）

    Returns:
        SessionManager 实例
    """
    global _session_manager_instance
    if _session_manager_instance is None:
        settings = get_settings()
        _session_manager_instance = SessionManager(
            store_type=settings.SESSION_STORE_TYPE,
            store_options=settings.store_options(),
            max_age=settings.SESSION_MAX_AGE
        )
    return _session_manager_instance
