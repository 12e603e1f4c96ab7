"""
Storage Factory - 根据配置创建存储后端

Design Pattern: Factory + Registry
- 上层代码与具体存储实现解耦
- 支持运行时注册新的存储后端
"""

import logging
from typing import Any, Dict, Optional, Type

from .base import SessionStorage
from .errors import UnsupportedStoreError
from .file_storage import FileSessionStorage
from .memory_storage import MemorySessionStorage

logger = logging.getLogger(__name__)


class StorageFactory:
    """
    存储工厂类，负责创建不同类型的存储后端

    Example:
        store = StorageFactory.create("file", path=Path("/tmp/sessions"), ttl=3600)
        await store.connect()
    """

    _providers: Dict[str, Type[SessionStorage]] = {
        "memory": MemorySessionStorage,
        "file": FileSessionStorage,
    }

    @classmethod
    def register_provider(cls, name: str, provider_class: Type[SessionStorage]) -> None:
        """
        注册新的存储后端

        Args:
            name: 存储类型名称
            provider_class: 存储后端类
        """
        cls._providers[name] = provider_class
        logger.info(f"已注册存储后端: {name}")

    @classmethod
    def available(cls) -> list:
        return sorted(cls._providers)

    @classmethod
    def create(cls, store_type: str, **options: Any) -> SessionStorage:
        """
        创建存储后端实例

        Args:
            store_type: 存储类型名称（memory / file）
            **options: 传递给存储后端构造函数的参数

        Returns:
            SessionStorage: 存储后端实例（尚未 connect）

        Raises:
            UnsupportedStoreError: 如果指定的存储类型不存在
        """
        provider_class = cls._providers.get(store_type)
        if provider_class is None:
            available = ", ".join(cls.available())
            logger.error(f"未知的存储类型: {store_type}，可用类型: {available}")
            raise UnsupportedStoreError(f"Unsupported store type: {store_type} (available: {available})")

        # None 表示使用后端默认值
        options = {key: value for key, value in options.items() if value is not None}
        try:
            store = provider_class(**options)
        except Exception as e:
            logger.error(f"创建存储后端 {store_type} 失败: {e}")
            raise
        logger.info(f"已创建存储后端: {store_type}")
        return store


async def create_storage(
    store_type: str,
    options: Optional[Dict[str, Any]] = None
) -> SessionStorage:
    """
    创建并初始化存储后端

    Initialization failures (e.g. the file store directory cannot be created)
    propagate to the caller.
    """
    store = StorageFactory.create(store_type, **(options or {}))
    await store.connect()
    return store
