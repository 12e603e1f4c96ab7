"""
Session store settings and configuration management.
"""
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Session store settings loaded from environment variables."""

    # 存储后端选择
    SESSION_STORE_TYPE: Literal["memory", "file"] = "memory"

    # 内存存储配置（秒）
    SESSION_MAX_AGE: float = 86400  # 24小时
    SESSION_CLEANUP_INTERVAL: float = 300  # 5分钟
    SESSION_INDEX_INTERVAL: float = 60  # 1分钟
    SESSION_AUTO_MAINTENANCE: bool = True

    # 文件存储配置
    SESSION_FILE_PATH: Optional[str] = None  # 默认 <cwd>/sessions
    SESSION_FILE_TTL: int = 86400

    LOG_LEVEL: str = "INFO"

    @model_validator(mode='after')
    def validate_durations(self):
        """验证所有时长配置为正数"""
        for name in (
            "SESSION_MAX_AGE",
            "SESSION_CLEANUP_INTERVAL",
            "SESSION_INDEX_INTERVAL",
            "SESSION_FILE_TTL",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} 必须大于 0")
        return self

    def store_options(self) -> Dict[str, Any]:
        """
        Build constructor options for the configured store type

        Returns:
            keyword arguments for the selected storage backend
        """
        if self.SESSION_STORE_TYPE == "file":
            return {
                "path": Path(self.SESSION_FILE_PATH) if self.SESSION_FILE_PATH else None,
                "ttl": self.SESSION_FILE_TTL,
            }
        return {
            "max_age": self.SESSION_MAX_AGE,
            "cleanup_interval": self.SESSION_CLEANUP_INTERVAL,
            "index_interval": self.SESSION_INDEX_INTERVAL,
            "auto_maintenance": self.SESSION_AUTO_MAINTENANCE,
        }

    class Config:
        env_file = ".env"
        case_sensitive = True


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    获取设置实例

    Returns:
        Settings 实例
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
