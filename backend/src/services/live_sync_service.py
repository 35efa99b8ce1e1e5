"""
Live sync bridge: republishes full collection snapshots on change.

Subscribes to the change stream for projects, users, teams and the session
user's notifications. Any change marks the collection stale; a single drain
task re-fetches stale collections in full (no incremental diffing) and
publishes the snapshot to local listeners and the user's WebSocket channel.
Several changes to one collection before the drain runs cost one re-fetch.

Notifications are fetched filtered by user only and sorted newest-first in
process.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.src.db.change_stream import ChangeEvent, ChangeStream, SubscriptionHandle
from backend.src.models.project import Project
from backend.src.models.team import Team
from backend.src.models.user import User
from backend.src.services.notification_store import NotificationStore
from backend.src.utils.logging_config import get_logger
from backend.src.utils.websocket import ConnectionManager


logger = get_logger("sync")


COLLECTIONS = ("projects", "users", "teams", "notifications")

Snapshot = Tuple[Dict[str, Any], ...]
SnapshotListener = Callable[[str, Snapshot], None]


class LiveSyncBridge:
    """
    Keeps read-only snapshots of the core collections for one user session.
    """

    def __init__(
        self,
        user_id: int,
        session_factory: Callable[[], Session],
        change_stream: ChangeStream,
        connection_manager: Optional[ConnectionManager] = None,
    ):
        self.user_id = user_id
        self._session_factory = session_factory
        self._stream = change_stream
        self._connections = connection_manager
        self._snapshots: Dict[str, Snapshot] = {name: () for name in COLLECTIONS}
        self._handles: List[SubscriptionHandle] = []
        self._listeners: List[SnapshotListener] = []
        self._stale: Set[str] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False

    # ------------------------------------------------------------------------
    # Read-only feeds
    # ------------------------------------------------------------------------

    def snapshot(self, collection: str) -> Snapshot:
        return self._snapshots[collection]

    @property
    def notifications(self) -> Snapshot:
        return self._snapshots["notifications"]

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener; returns a function removing it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the change stream and load initial snapshots."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        for table in COLLECTIONS:
            where = self._owned_by_user if table == "notifications" else None
            self._handles.append(self._stream.subscribe(table, self._on_change, where))
        self.running = True
        await self.refresh_all()

    def stop(self) -> None:
        """Release subscriptions and cancel any pending refresh."""
        for handle in self._handles:
            handle.unsubscribe()
        self._handles.clear()
        self._stale.clear()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self._listeners.clear()
        self.running = False

    def _owned_by_user(self, change: ChangeEvent) -> bool:
        return change.user_id == self.user_id

    # ------------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------------

    def _on_change(self, change: ChangeEvent) -> None:
        # May run on a worker thread (sync routes commit off-loop)
        loop = self._loop
        if not self.running or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._mark_stale, change.table)

    def _mark_stale(self, collection: str) -> None:
        if not self.running:
            return
        self._stale.add(collection)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._stale:
            collection = self._stale.pop()
            await self.refresh(collection)

    async def refresh_all(self) -> None:
        for collection in COLLECTIONS:
            await self.refresh(collection)

    async def refresh(self, collection: str) -> None:
        """
        Re-fetch one collection in full and publish it.

        A failed fetch keeps the previous snapshot.
        """
        try:
            items = self._fetch(collection)
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to refresh {collection}: {e}",
                extra={"collection": collection, "user_id": self.user_id},
            )
            return

        self._snapshots[collection] = items
        await self._publish(collection, items)

    def _fetch(self, collection: str) -> Snapshot:
        db = self._session_factory()
        try:
            if collection == "projects":
                rows = db.query(Project).order_by(Project.created_at.desc(), Project.id.desc()).all()
            elif collection == "users":
                rows = db.query(User).order_by(User.name).all()
            elif collection == "teams":
                rows = db.query(Team).order_by(Team.name).all()
            elif collection == "notifications":
                rows = NotificationStore(db).list_for_user(self.user_id)
            else:
                raise ValueError(f"Unknown collection: {collection}")
            return tuple(row.to_dict() for row in rows)
        finally:
            db.close()

    async def _publish(self, collection: str, items: Snapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(collection, items)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}", extra={"collection": collection})

        if self._connections is not None:
            await self._connections.send_to_user(
                self.user_id,
                {"type": "snapshot", "collection": collection, "items": list(items)},
            )
