"""
Middleware components for the CostPilot notification backend.

This module provides:
- SessionIdentity: Dataclass representing the signed-in user of a request
- require_auth: FastAPI dependency for requiring authentication
- get_websocket_identity: Identity lookup for WebSocket connections
"""

from backend.src.middleware.auth import SessionIdentity, get_websocket_identity, require_auth

__all__ = [
    "SessionIdentity",
    "require_auth",
    "get_websocket_identity",
]
