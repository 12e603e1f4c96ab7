"""
File Storage - 基于本地文件的会话存储实现
每个会话一个 JSON 文件，读取时惰性过期
"""

import asyncio
import contextlib
import json
import logging
import os
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiofiles
import aiofiles.os

from .base import SessionStorage, SessionRecord
from .errors import (
    InvalidSessionIdError,
    SessionCorruptedError,
    SessionIOError,
    StorageInitializationError,
)

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


def _json_default(value: Any) -> Any:
    """Serialize temporal values embedded in a payload as ISO-8601 text"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _restore_datetime(payload: Dict[str, Any], dotted_path: str) -> None:
    *parents, leaf = dotted_path.split(".")
    node: Any = payload
    for key in parents:
        if not isinstance(node, dict):
            return
        node = node.get(key)
    if isinstance(node, dict) and isinstance(node.get(leaf), str):
        try:
            node[leaf] = datetime.fromisoformat(node[leaf])
        except ValueError:
            # 非 ISO 文本保持原样
            pass


class FileSessionStorage(SessionStorage):
    """
    基于文件的会话存储

    特性：
    - 进程重启后会话仍然保留
    - 无后台清理，过期会话在读取时删除
    - 同一进程内按会话ID串行化写操作

    File format (``<path>/<sid>.json``)::

        {"sid": "...", "session": {...}, "expires": "2026-10-17T08:00:00+00:00"}
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        ttl: int = 86400,
        datetime_fields: Sequence[str] = ("expiry.expires",),
        clock: Callable[[], float] = time.time
    ):
        """
        初始化文件存储

        Args:
            path: 会话目录，默认 <cwd>/sessions
            ttl: 会话有效期（秒）
            datetime_fields: 读取时需要还原为 datetime 的负载字段（点分路径）
            clock: 返回当前 POSIX 时间戳的函数
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        self.path = Path(path) if path is not None else Path.cwd() / "sessions"
        self.ttl = ttl
        self.datetime_fields = tuple(datetime_fields)
        self._clock = clock

        # sid -> [lock, holders]
        self._locks: Dict[str, list] = {}

        logger.info(f"初始化 FileSessionStorage: {self.path}, TTL={ttl}s")

    async def ensure_directory(self) -> None:
        """
        确保会话目录存在（不存在时递归创建）

        Raises:
            StorageInitializationError: 目录无法创建或访问
        """
        try:
            if await aiofiles.os.path.isdir(self.path):
                return
            await aiofiles.os.makedirs(self.path, exist_ok=True)
            logger.info(f"已创建会话目录: {self.path}")
        except OSError as e:
            logger.error(f"❌ 会话目录初始化失败: {self.path}: {e}")
            raise StorageInitializationError(
                f"Cannot create or access session directory {self.path}: {e}",
                operation="initialize"
            ) from e

    async def connect(self) -> None:
        await self.ensure_directory()

    async def health_check(self) -> bool:
        try:
            return await aiofiles.os.path.isdir(self.path)
        except OSError as e:
            logger.warning(f"文件存储健康检查失败: {e}")
            return False

    @staticmethod
    def _is_valid_sid(sid: str) -> bool:
        return not (
            not sid
            or sid in (".", "..")
            or "/" in sid
            or "\\" in sid
            or "\x00" in sid
            or os.sep in sid
        )

    def _file_path(self, sid: str) -> Path:
        if not self._is_valid_sid(sid):
            raise InvalidSessionIdError(f"Session id cannot be used as a file name: {sid!r}")
        return self.path / f"{sid}{RECORD_SUFFIX}"

    @contextlib.asynccontextmanager
    async def _locked(self, sid: str):
        entry = self._locks.get(sid)
        if entry is None:
            entry = self._locks[sid] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[sid]

    # ===== 序列化 =====

    def _decode(self, raw: str, sid: str) -> SessionRecord:
        try:
            record = SessionRecord.from_dict(json.loads(raw))
            for dotted_path in self.datetime_fields:
                _restore_datetime(record.payload, dotted_path)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"会话数据解析失败: {sid}: {e}")
            raise SessionCorruptedError(
                f"Failed to parse session data for {sid}",
                operation="read",
                sid=sid
            ) from e
        return record

    def _encode(self, record: SessionRecord) -> str:
        return json.dumps(record.to_dict(), default=_json_default, ensure_ascii=False)

    # ===== 文件操作（调用方持有锁） =====

    async def _read(self, sid: str) -> Optional[SessionRecord]:
        file_path = self._file_path(sid)
        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise SessionCorruptedError(
                f"Session data for {sid} is not valid UTF-8",
                operation="read",
                sid=sid
            ) from e
        except OSError as e:
            logger.error(f"会话读取失败: {sid}: {e}")
            raise SessionIOError(
                f"Failed to read session data for {sid}: {e}",
                operation="read",
                sid=sid
            ) from e
        return self._decode(raw, sid)

    async def _write(self, sid: str, payload: Dict[str, Any]) -> None:
        file_path = self._file_path(sid)
        record = SessionRecord(
            sid=sid,
            payload=payload,
            expires_at=self._clock() + self.ttl
        )
        try:
            content = self._encode(record)
        except (TypeError, ValueError) as e:
            raise SessionIOError(
                f"Failed to serialize session data for {sid}: {e}",
                operation="write",
                sid=sid
            ) from e

        tmp_path = file_path.with_name(file_path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
            await aiofiles.os.replace(tmp_path, file_path)
        except OSError as e:
            logger.error(f"会话写入失败: {sid}: {e}")
            with contextlib.suppress(OSError):
                await aiofiles.os.remove(tmp_path)
            raise SessionIOError(
                f"Failed to write session data for {sid}: {e}",
                operation="write",
                sid=sid
            ) from e
        logger.debug(f"保存会话到文件: {file_path}, TTL={self.ttl}s")

    async def _remove(self, sid: str) -> None:
        file_path = self._file_path(sid)
        try:
            await aiofiles.os.remove(file_path)
            logger.debug(f"删除会话文件: {file_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"会话删除失败: {sid}: {e}")
            raise SessionIOError(
                f"Failed to destroy session {sid}: {e}",
                operation="destroy",
                sid=sid
            ) from e

    async def _list_record_files(self, operation: str) -> List[str]:
        try:
            names = await aiofiles.os.listdir(self.path)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error(f"会话目录读取失败: {self.path}: {e}")
            raise SessionIOError(
                f"Failed to list session directory {self.path}: {e}",
                operation=operation
            ) from e
        return sorted(
            name for name in names
            if name.endswith(RECORD_SUFFIX)
            and self._is_valid_sid(name[:-len(RECORD_SUFFIX)])
        )

    # ===== 存储接口 =====

    async def get(self, sid: str) -> Optional[Dict[str, Any]]:
        async with self._locked(sid):
            return await self._get_live(sid)

    async def _get_live(self, sid: str) -> Optional[Dict[str, Any]]:
        record = await self._read(sid)
        if record is None:
            return None
        if record.is_expired(self._clock()):
            logger.debug(f"会话已过期，删除文件: {sid}")
            await self._remove(sid)
            return None
        return record.payload

    async def set(self, sid: str, payload: Dict[str, Any]) -> None:
        async with self._locked(sid):
            await self._write(sid, payload)

    async def destroy(self, sid: str) -> None:
        async with self._locked(sid):
            await self._remove(sid)

    async def touch(self, sid: str, payload: Dict[str, Any]) -> None:
        async with self._locked(sid):
            if await self._get_live(sid) is None:
                return
            await self._write(sid, payload)

    async def all(self) -> List[Tuple[str, Dict[str, Any]]]:
        names = await self._list_record_files("list")
        sids = [name[:-len(RECORD_SUFFIX)] for name in names]
        records = []
        for sid in sids:
            record = await self._read(sid)
            if record is not None:
                records.append((sid, record))

        now = self._clock()
        return [
            (sid, record.payload)
            for sid, record in records
            if not record.is_expired(now)
        ]

    async def length(self) -> int:
        return len(await self._list_record_files("list"))

    async def clear(self) -> None:
        names = await self._list_record_files("clear")
        for name in names:
            try:
                await aiofiles.os.remove(self.path / name)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"清空会话目录失败: {name}: {e}")
                raise SessionIOError(
                    f"Failed to clear session file {name}: {e}",
                    operation="clear"
                ) from e
        logger.info(f"已清空会话目录: {self.path} ({len(names)} 个文件)")
