"""
Logging setup shared by applications embedding the session store.
"""
import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging

    Args:
        level: log level name, defaults to Settings.LOG_LEVEL
    """
    if level is None:
        from .settings import get_settings
        level = get_settings().LOG_LEVEL

    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()]
    )
