"""
Notifications API endpoints.

Provides endpoints for:
- Notification history (list, unread count, mark read, delete, bulk ops)
- Notification preferences (get, partial update)
- Project health scan (manual trigger)
- Push link management and diagnostics
- Session start/end and the live WebSocket feed
"""

from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.orm import Session

from backend.src.db.database import get_db
from backend.src.middleware.auth import SessionIdentity, get_websocket_identity, require_auth
from backend.src.models.user import User
from backend.src.schemas.notifications import (
    BulkUpdateResponse,
    HealthScanResponse,
    NotificationListResponse,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    NotificationResponse,
    PushLinkCreate,
    PushStatusResponse,
    SubscribeResultResponse,
    UnreadCountResponse,
)
from backend.src.services.health_scan_service import HealthScanService
from backend.src.services.live_sync_service import COLLECTIONS
from backend.src.services.notification_service import NotificationEngine
from backend.src.services.preference_service import PreferenceMatrix, PreferenceService
from backend.src.services.push_client_bridge import ClientPushBridge
from backend.src.services.push_lifecycle import PushSubscriptionLifecycle, SubscribeResult
from backend.src.services.session_service import SessionManager, get_session_manager
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import get_connection_manager


logger = get_logger("api")

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_notification_engine(
    db: Session = Depends(get_db),
    identity: SessionIdentity = Depends(require_auth),
) -> NotificationEngine:
    """Create a NotificationEngine bound to the caller's session identity."""
    return NotificationEngine(db, session_user_id=identity.user_id)


def _get_user(db: Session, user_id: int) -> User:
    """Fetch user from database by ID. Raises 404 if not found."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


def _preferences_response(prefs: PreferenceMatrix) -> NotificationPreferencesResponse:
    return NotificationPreferencesResponse(**prefs.to_blob())


def _subscribe_response(result: SubscribeResult) -> SubscribeResultResponse:
    return SubscribeResultResponse(
        success=result.success,
        message=result.message,
        state=result.state.value,
    )


def get_push_lifecycle(
    db: Session = Depends(get_db),
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
    manager: SessionManager = Depends(get_session_manager),
) -> PushSubscriptionLifecycle:
    """
    The caller's push lifecycle.

    Uses the live session's lifecycle when the user is signed in, so state
    and diagnostics reflect the browser session; otherwise a request-scoped
    one backed by whatever the client last reported.
    """
    session = manager.get(identity.user_id)
    if session is not None:
        return session.push
    bridge = ClientPushBridge(identity.user_id, get_connection_manager())
    return PushSubscriptionLifecycle(db, engine, bridge, bridge, is_online=bridge.is_online)


# ============================================================================
# Notification History Endpoints
# ============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notifications",
)
async def list_notifications(
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    """
    Returns all notifications of the authenticated user, newest first.
    """
    items = engine.list_notifications(identity.user_id)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=len(items),
        unread_count=sum(1 for n in items if not n.is_read),
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get unread notification count",
)
async def get_unread_count(
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    return UnreadCountResponse(unread_count=engine.unread_count(identity.user_id))


@router.post(
    "/read-all",
    response_model=BulkUpdateResponse,
    summary="Mark all notifications as read",
)
async def mark_all_notifications_read(
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    return BulkUpdateResponse(updated_count=engine.mark_all_read(identity.user_id))


@router.delete(
    "",
    response_model=BulkUpdateResponse,
    summary="Delete all notifications",
)
async def delete_all_notifications(
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    return BulkUpdateResponse(updated_count=engine.delete_all(identity.user_id))


@router.post(
    "/{guid}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
async def mark_notification_read(
    guid: str,
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    """
    Mark a single notification as read. Idempotent.

    Unknown GUIDs and GUIDs owned by other users both return 404.
    """
    if not engine.mark_read(guid, identity.user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification not found: {guid}",
        )
    notification = engine.store.get_by_guid(guid, identity.user_id)
    return NotificationResponse.model_validate(notification)


# ============================================================================
# Notification Preferences Endpoints
# ============================================================================


@router.get(
    "/preferences",
    response_model=NotificationPreferencesResponse,
    summary="Get notification preferences",
)
async def get_notification_preferences(
    identity: SessionIdentity = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """
    Returns the authenticated user's resolved notification preferences.
    """
    user = _get_user(db, identity.user_id)
    return _preferences_response(PreferenceService(db).get_user_preferences(user))


@router.patch(
    "/preferences",
    response_model=NotificationPreferencesResponse,
    summary="Update notification preferences",
)
async def update_notification_preferences(
    body: NotificationPreferencesUpdate,
    identity: SessionIdentity = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """
    Update the authenticated user's notification preferences.

    All fields are optional; only provided fields (and, within inApp/email,
    only provided categories) are updated.
    """
    user = _get_user(db, identity.user_id)
    updates = body.model_dump(exclude_none=True)
    prefs = PreferenceService(db).update_preferences(user, updates)
    return _preferences_response(prefs)


# ============================================================================
# Health Scan Endpoint
# ============================================================================


@router.post(
    "/health-scan",
    response_model=HealthScanResponse,
    summary="Run the project health scan",
)
async def run_health_scan(
    db: Session = Depends(get_db),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    """
    Scan active projects for deadline and budget problems.

    Safe to call repeatedly: same-day repeats are suppressed.
    """
    summary = await HealthScanService(db, engine).run()
    return HealthScanResponse(
        projects_scanned=summary.projects_scanned,
        events_emitted=summary.events_emitted,
        notifications_created=summary.notifications_created,
    )


# ============================================================================
# Push Link Endpoints
# ============================================================================


@router.post(
    "/push/link",
    response_model=SubscribeResultResponse,
    summary="Link a resolved push subscriber id",
)
async def link_push_device(
    body: PushLinkCreate,
    identity: SessionIdentity = Depends(require_auth),
    lifecycle: PushSubscriptionLifecycle = Depends(get_push_lifecycle),
):
    """
    Link a subscriber id resolved by the client to the authenticated user.

    Replaces any existing link. The first link of a user triggers a welcome
    notification.
    """
    result = await lifecycle.link(
        identity.user_id, body.subscriber_id, body.platform, explicit=True
    )
    return _subscribe_response(result)


@router.delete(
    "/push/link",
    response_model=SubscribeResultResponse,
    summary="Unlink the push device",
)
async def unlink_push_device(
    identity: SessionIdentity = Depends(require_auth),
    lifecycle: PushSubscriptionLifecycle = Depends(get_push_lifecycle),
):
    result = await lifecycle.unsubscribe(identity.user_id, explicit=True)
    return _subscribe_response(result)


@router.post(
    "/push/subscribe",
    response_model=SubscribeResultResponse,
    summary="Negotiate a push subscription with the browser",
)
async def subscribe_push(
    identity: SessionIdentity = Depends(require_auth),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Run the full subscribe flow (SDK, permission, id resolution) through the
    browser connected on the live WebSocket. Requires an active session.
    """
    session = manager.get(identity.user_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No active session",
        )
    return _subscribe_response(await session.subscribe_to_push())


@router.get(
    "/push/status",
    response_model=PushStatusResponse,
    summary="Push subscription diagnostics",
)
async def get_push_status(
    identity: SessionIdentity = Depends(require_auth),
    lifecycle: PushSubscriptionLifecycle = Depends(get_push_lifecycle),
):
    return PushStatusResponse(**lifecycle.get_status(identity.user_id))


# ============================================================================
# Session Endpoints
# ============================================================================


@router.post(
    "/session",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Start the notification session",
)
async def start_session(
    identity: SessionIdentity = Depends(require_auth),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Called on sign-in. Starts live sync, the health scan and push re-sync.
    """
    await manager.sign_in(identity.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/session",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End the notification session",
)
async def end_session(
    identity: SessionIdentity = Depends(require_auth),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Called on sign-out. Releases live sync subscriptions and background work.
    """
    await manager.sign_out(identity.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Declared after /session so that path is not captured as a GUID
@router.delete(
    "/{guid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(
    guid: str,
    identity: SessionIdentity = Depends(require_auth),
    engine: NotificationEngine = Depends(get_notification_engine),
):
    if not engine.delete_notification(guid, identity.user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification not found: {guid}",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# WebSocket Endpoint
# ============================================================================


@router.websocket("/ws")
async def notifications_websocket(
    websocket: WebSocket,
    identity: Optional[SessionIdentity] = Depends(get_websocket_identity),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Live feed for the signed-in user.

    Server -> client: snapshot and local_notification messages, plus push
    negotiation requests. Client -> server: push_state reports and ping.
    """
    if identity is None:
        await websocket.close(code=4001, reason="Authentication required")
        return

    connections = get_connection_manager()
    session = await manager.sign_in(identity.user_id)
    await connections.connect(identity.user_id, websocket)

    try:
        for collection in COLLECTIONS:
            await websocket.send_json({
                "type": "snapshot",
                "collection": collection,
                "items": list(session.live_sync.snapshot(collection)),
            })

        while True:
            message = await websocket.receive_json()
            message_type = message.get("type") if isinstance(message, dict) else None
            if message_type == "push_state":
                session.report_push_state(message)
            elif message_type == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug(
                    f"Ignoring WebSocket message type: {message_type}",
                    extra={"user_id": identity.user_id},
                )
    except WebSocketDisconnect:
        pass
    finally:
        connections.disconnect(identity.user_id, websocket)
