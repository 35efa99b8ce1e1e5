"""
Configuration module for the CostPilot notification backend.

Provides centralized configuration for:
- Email relay and push provider credentials
- Push subscription negotiation timing
- Deduplication reference time zone
- Session cookie handling
"""

from backend.src.config.settings import AppSettings, get_settings
from backend.src.config.session import SessionSettings, get_session_settings

__all__ = [
    "AppSettings",
    "get_settings",
    "SessionSettings",
    "get_session_settings",
]
