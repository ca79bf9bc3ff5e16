"""
ankabot utilities module.
"""

from src.utils.config import ensure_directories, get_settings
from src.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    # Config
    "get_settings",
    "ensure_directories",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "unbind_context",
    "LogContext",
]
