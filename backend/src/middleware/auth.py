"""
Authentication dependencies for API routes.

Identity comes from the external auth provider, which stores the signed-in
user's GUID in the session cookie (under SESSION_USER_KEY). These helpers
resolve it to a SessionIdentity:

- require_auth: FastAPI dependency for HTTP routes (401/403 on failure)
- get_websocket_identity: standalone lookup for WebSocket endpoints
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, WebSocket, status
from sqlalchemy.orm import Session

from backend.src.config.session import get_session_settings
from backend.src.db.database import SessionLocal, get_db
from backend.src.models.user import User


@dataclass
class SessionIdentity:
    """
    The authenticated user of a request.

    Attributes:
        user_id: Internal user ID for database queries
        user_guid: User's external GUID (usr_xxx)
        user_email: User's email address, if any
    """

    user_id: int
    user_guid: str
    user_email: Optional[str] = None

    def __post_init__(self):
        if not self.user_id or not self.user_guid:
            raise ValueError("user_id and user_guid are required")


def _lookup_user(db: Session, user_guid: Optional[str]) -> Optional[User]:
    if not user_guid:
        return None
    try:
        user_uuid = User.parse_guid(user_guid)
    except ValueError:
        return None
    return db.query(User).filter(User.uuid == user_uuid).first()


def _session_user_guid(connection) -> Optional[str]:
    if "session" not in connection.scope:
        return None
    return connection.session.get(get_session_settings().user_key)


def _identity(user: User) -> SessionIdentity:
    return SessionIdentity(user_id=user.id, user_guid=user.guid, user_email=user.email)


async def require_auth(
    request: Request,
    db: Session = Depends(get_db),
) -> SessionIdentity:
    """
    FastAPI dependency that requires an authenticated session.

    Returns:
        SessionIdentity of the signed-in user

    Raises:
        HTTPException 401: If not signed in or the session is invalid
        HTTPException 403: If the account is deactivated

    Example:
        @router.get("/items")
        async def list_items(identity: SessionIdentity = Depends(require_auth)):
            ...
    """
    user_guid = _session_user_guid(request)
    if not user_guid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    user = _lookup_user(db, user_guid)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalid",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return _identity(user)


async def get_websocket_identity(websocket: WebSocket) -> Optional[SessionIdentity]:
    """
    Resolve the identity of a WebSocket connection.

    Opens and closes its own database session so no connection is held for
    the lifetime of the socket.

    Returns:
        SessionIdentity if authenticated and active, None otherwise
    """
    user_guid = _session_user_guid(websocket)

    db = SessionLocal()
    try:
        user = _lookup_user(db, user_guid)
        if not user or not user.is_active:
            return None
        return _identity(user)
    finally:
        db.close()


__all__ = [
    "SessionIdentity",
    "require_auth",
    "get_websocket_identity",
]
