"""
Memory Storage - 基于内存的会话存储实现

Two structures per instance:
- primary map: sid -> SessionRecord
- expiration index: sorted list of (expires_at, sid)

Two independent background loops keep them healthy:
- cleanup loop walks the index in ascending expiry order and stops at the
  first entry that has not expired yet
- index rebuild loop rebuilds the index from the primary map and swaps it in
"""

import asyncio
import bisect
import copy
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import SessionStorage, SessionRecord

logger = logging.getLogger(__name__)

IndexEntry = Tuple[float, str]


class MemorySessionStorage(SessionStorage):
    """
    基于内存的会话存储

    特性：
    - O(1) 会话查找
    - 按过期时间排序的索引，清理时无需扫描全部会话
    - 周期性重建索引，修复索引漂移
    """

    def __init__(
        self,
        max_age: float = 86400,  # 24小时
        cleanup_interval: float = 300,  # 5分钟
        index_interval: float = 60,  # 1分钟
        auto_maintenance: bool = True,
        clock: Callable[[], float] = time.time
    ):
        """
        初始化内存存储

        Args:
            max_age: 会话有效期（秒）
            cleanup_interval: 清理循环间隔（秒）
            index_interval: 索引重建循环间隔（秒）
            auto_maintenance: connect() 时是否自动启动两个后台循环
            clock: 返回当前 POSIX 时间戳的函数
        """
        for name, value in (
            ("max_age", max_age),
            ("cleanup_interval", cleanup_interval),
            ("index_interval", index_interval),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        self.max_age = max_age
        self.cleanup_interval = cleanup_interval
        self.index_interval = index_interval
        self.auto_maintenance = auto_maintenance
        self._clock = clock

        self._sessions: Dict[str, SessionRecord] = {}
        self._expiration_index: List[IndexEntry] = []

        self._cleanup_task: Optional[asyncio.Task] = None
        self._index_task: Optional[asyncio.Task] = None

        logger.info(
            "初始化 MemorySessionStorage: max_age=%ss, cleanup=%ss, index=%ss",
            max_age,
            cleanup_interval,
            index_interval
        )

    # ===== 索引维护 =====

    def _index(self, expires_at: float, sid: str) -> None:
        bisect.insort(self._expiration_index, (expires_at, sid))

    def _unindex(self, expires_at: float, sid: str) -> None:
        index = self._expiration_index
        pos = bisect.bisect_left(index, (expires_at, sid))
        if pos < len(index) and index[pos] == (expires_at, sid):
            del index[pos]

    def index_size(self) -> int:
        """Number of entries currently in the expiration index"""
        return len(self._expiration_index)

    # ===== 存储接口 =====

    async def get(self, sid: str) -> Optional[Dict[str, Any]]:
        record = self._sessions.get(sid)
        if record is None:
            return None

        if record.is_expired(self._clock()):
            logger.debug(f"会话已过期: {sid}")
            await self.destroy(sid)
            return None

        return copy.deepcopy(record.payload)

    async def set(self, sid: str, payload: Dict[str, Any]) -> None:
        expires_at = self._clock() + self.max_age

        existing = self._sessions.get(sid)
        if existing is not None:
            self._unindex(existing.expires_at, sid)

        self._sessions[sid] = SessionRecord(
            sid=sid,
            payload=copy.deepcopy(payload),
            expires_at=expires_at
        )
        self._index(expires_at, sid)
        logger.debug(f"保存会话: {sid}, expires_at={expires_at}")

    async def destroy(self, sid: str) -> None:
        record = self._sessions.pop(sid, None)
        if record is not None:
            self._unindex(record.expires_at, sid)
            logger.debug(f"删除会话: {sid}")

    async def touch(self, sid: str, payload: Dict[str, Any]) -> None:
        record = self._sessions.get(sid)
        if record is None:
            return

        new_expires = self._clock() + self.max_age
        self._unindex(record.expires_at, sid)
        record.payload = copy.deepcopy(payload)
        # 过期时间只会向后延长
        record.expires_at = max(record.expires_at, new_expires)
        self._index(record.expires_at, sid)
        logger.debug(f"刷新会话: {sid}, expires_at={record.expires_at}")

    async def all(self) -> List[Tuple[str, Dict[str, Any]]]:
        now = self._clock()
        return [
            (sid, copy.deepcopy(record.payload))
            for sid, record in self._sessions.items()
            if not record.is_expired(now)
        ]

    async def length(self) -> int:
        return len(self._sessions)

    async def clear(self) -> None:
        self._sessions.clear()
        self._expiration_index = []
        logger.info("内存会话已清空")

    # ===== 后台维护 =====

    def cleanup_expired(self) -> int:
        """
        回收已过期会话（单次清理）

        Walks the expiration index from the earliest expiry and stops at the
        first entry that is still in the future. Entries left behind by a
        refreshed session are dropped without touching the live record.

        Returns:
            回收的会话数量
        """
        now = self._clock()
        index = self._expiration_index
        consumed = 0
        reclaimed = 0

        for expires_at, sid in index:
            if expires_at > now:
                break
            consumed += 1
            record = self._sessions.get(sid)
            if record is not None and record.is_expired(now):
                del self._sessions[sid]
                reclaimed += 1

        del index[:consumed]

        if reclaimed:
            logger.info(f"已清理 {reclaimed} 个过期会话")
        return reclaimed

    def rebuild_index(self) -> int:
        """
        从主存储重建过期索引（单次重建）

        Expired records met on the way are deleted from the primary map. The
        new index replaces the old one in a single assignment.

        Returns:
            新索引中的条目数量
        """
        now = self._clock()
        new_index: List[IndexEntry] = []

        for sid, record in list(self._sessions.items()):
            if record.is_expired(now):
                del self._sessions[sid]
            else:
                new_index.append((record.expires_at, sid))

        new_index.sort()
        self._expiration_index = new_index
        logger.debug(f"索引已重建: {len(new_index)} 条")
        return len(new_index)

    async def _cleanup_loop(self):
        """会话清理循环"""
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"会话清理失败: {e}")

    async def _index_loop(self):
        """索引重建循环"""
        while True:
            try:
                await asyncio.sleep(self.index_interval)
                self.rebuild_index()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"索引重建失败: {e}")

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    @property
    def index_rebuild_running(self) -> bool:
        return self._index_task is not None and not self._index_task.done()

    async def start_cleanup(self) -> None:
        """启动会话清理任务（后台运行）"""
        if self.cleanup_running:
            logger.debug("清理任务已在运行")
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("会话清理任务已启动")

    async def stop_cleanup(self) -> None:
        """停止会话清理任务"""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("会话清理任务已停止")

    async def start_index_rebuild(self) -> None:
        """启动索引重建任务（后台运行）"""
        if self.index_rebuild_running:
            logger.debug("索引重建任务已在运行")
            return
        self._index_task = asyncio.create_task(self._index_loop())
        logger.info("索引重建任务已启动")

    async def stop_index_rebuild(self) -> None:
        """停止索引重建任务"""
        task, self._index_task = self._index_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("索引重建任务已停止")

    async def connect(self) -> None:
        if self.auto_maintenance:
            await self.start_cleanup()
            await self.start_index_rebuild()

    async def close(self) -> None:
        await self.stop_cleanup()
        await self.stop_index_rebuild()

    def get_statistics(self) -> dict:
        """
        获取存储统计信息

        Returns:
            统计信息字典
        """
        now = self._clock()
        live = sum(1 for r in self._sessions.values() if not r.is_expired(now))
        return {
            "total_sessions": len(self._sessions),
            "live_sessions": live,
            "index_entries": len(self._expiration_index),
            "cleanup_running": self.cleanup_running,
            "index_rebuild_running": self.index_rebuild_running,
        }
