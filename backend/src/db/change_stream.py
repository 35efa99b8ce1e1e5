"""
In-process change stream over committed ORM writes.

Session events collect one ChangeEvent per inserted, updated or deleted
object during flush, and publish them to subscribers once the transaction
commits. Rolled-back changes are discarded. Bulk query.update()/delete()
bypass the unit of work and are therefore not observed.

Usage:
    stream = get_change_stream()
    handle = stream.subscribe("notifications", on_change,
                              where=lambda e: e.user_id == user_id)
    ...
    handle.unsubscribe()
"""

import itertools
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from backend.src.utils.logging_config import get_logger


logger = get_logger("db")


PENDING_KEY = "costpilot_pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change."""

    table: str
    operation: str  # insert | update | delete
    key: Optional[str] = None
    user_id: Optional[int] = None


ChangeCallback = Callable[[ChangeEvent], None]
ChangeFilter = Callable[[ChangeEvent], bool]


class SubscriptionHandle:
    """Releasable handle returned by ChangeStream.subscribe()."""

    def __init__(self, stream: "ChangeStream", subscription_id: int, table: str):
        self._stream = stream
        self.subscription_id = subscription_id
        self.table = table
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._stream._remove(self.subscription_id)
            self.active = False


class ChangeStream:
    """
    Publishes committed changes per table.

    Callbacks run synchronously on the committing thread, outside any
    transaction; they must not use the committing session.
    """

    def __init__(self):
        self._subscribers: Dict[int, tuple] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._installed = False
        # Each installed stream keeps its own pending list on the session
        self._pending_key = f"{PENDING_KEY}_{id(self)}"

    # ------------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------------

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        where: Optional[ChangeFilter] = None,
    ) -> SubscriptionHandle:
        """
        Subscribe to committed changes on a table.

        Args:
            table: Table name (e.g. "notifications")
            callback: Called with each matching ChangeEvent
            where: Optional predicate narrowing the events delivered
        """
        with self._lock:
            subscription_id = next(self._ids)
            self._subscribers[subscription_id] = (table, callback, where)
        return SubscriptionHandle(self, subscription_id, table)

    def _remove(self, subscription_id: int) -> None:
        with self._lock:
            self._subscribers.pop(subscription_id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, change: ChangeEvent) -> None:
        """Deliver a change to every matching subscriber."""
        with self._lock:
            subscribers = list(self._subscribers.values())

        for table, callback, where in subscribers:
            if table != change.table:
                continue
            if where is not None and not where(change):
                continue
            try:
                callback(change)
            except Exception as e:
                logger.error(
                    f"Change subscriber failed: {e}",
                    extra={"table": change.table, "operation": change.operation},
                )

    # ------------------------------------------------------------------------
    # Session hooks
    # ------------------------------------------------------------------------

    def install(self) -> None:
        """Attach to every SQLAlchemy Session (idempotent)."""
        if self._installed:
            return
        event.listen(Session, "after_flush", self._after_flush)
        event.listen(Session, "after_commit", self._after_commit)
        event.listen(Session, "after_soft_rollback", self._after_rollback)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        event.remove(Session, "after_flush", self._after_flush)
        event.remove(Session, "after_commit", self._after_commit)
        event.remove(Session, "after_soft_rollback", self._after_rollback)
        self._installed = False

    @staticmethod
    def _describe(obj, operation: str) -> Optional[ChangeEvent]:
        table = getattr(obj, "__tablename__", None)
        if table is None:
            return None
        return ChangeEvent(
            table=table,
            operation=operation,
            key=getattr(obj, "guid", None),
            user_id=getattr(obj, "user_id", None),
        )

    def _after_flush(self, session: Session, flush_context) -> None:
        # new/dirty/deleted still hold their pre-flush contents here
        pending: List[ChangeEvent] = session.info.setdefault(self._pending_key, [])
        for obj in session.new:
            change = self._describe(obj, "insert")
            if change:
                pending.append(change)
        for obj in session.dirty:
            if not session.is_modified(obj, include_collections=False):
                continue
            change = self._describe(obj, "update")
            if change:
                pending.append(change)
        for obj in session.deleted:
            change = self._describe(obj, "delete")
            if change:
                pending.append(change)

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(self._pending_key, None)
        if not pending:
            return
        for change in pending:
            self.publish(change)

    def _after_rollback(self, session: Session, previous_transaction) -> None:
        if previous_transaction.parent is None:
            session.info.pop(self._pending_key, None)


# Singleton instance
_change_stream: Optional[ChangeStream] = None


def get_change_stream() -> ChangeStream:
    """
    Get the singleton ChangeStream, installing its session hooks on first call.
    """
    global _change_stream
    if _change_stream is None:
        _change_stream = ChangeStream()
        _change_stream.install()
    return _change_stream
