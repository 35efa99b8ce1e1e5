"""
Utility modules for the CostPilot notification backend.

This package contains shared utilities used across the application:
- logging_config: Named loggers with structured extra fields
- websocket: Per-user WebSocket connection manager
"""

from backend.src.utils.logging_config import get_logger, init_logging
from backend.src.utils.websocket import ConnectionManager, get_connection_manager

__all__ = [
    "get_logger",
    "init_logging",
    "ConnectionManager",
    "get_connection_manager",
]
