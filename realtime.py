"""
Per-table change notifications.

A ChangeFeed is bound to a session factory; once a session commits, every
row it inserted, updated or deleted is published to the callbacks watching
that table. Rolled-back work is never published.

    feed = ChangeFeed()
    feed.bind(SessionLocal)
    with feed.watch("products", lambda event: print(event.type, event.record)):
        ...
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_TABLES = "*"

_PENDING_KEY = "pending_changes"


@dataclass
class ChangeEvent:
    table: str
    type: str
    record: Dict[str, Any] = field(default_factory=dict)


class Subscription:
    """Handle returned by ChangeFeed.watch; unsubscribes on exit."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: Callable[[ChangeEvent], None]):
        self._feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._feed._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


def _snapshot(obj) -> Dict[str, Any]:
    state = inspect(obj)
    loaded = state.dict
    return {attr.key: loaded[attr.key] for attr in state.mapper.column_attrs if attr.key in loaded}


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, List[Subscription]] = {}

    # --------------------------- subscriptions ---------------------------
    def watch(self, table: str, callback: Callable[[ChangeEvent], None]) -> Subscription:
        sub = Subscription(self, table, callback)
        with self._lock:
            self._subscriptions.setdefault(table, []).append(sub)
        return sub

    def _remove(self, sub: Subscription):
        with self._lock:
            subs = self._subscriptions.get(sub.table, [])
            if sub in subs:
                subs.remove(sub)

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, []))

    def publish(self, change: ChangeEvent):
        with self._lock:
            targets = list(self._subscriptions.get(change.table, [])) + list(
                self._subscriptions.get(ALL_TABLES, [])
            )
        for sub in targets:
            try:
                sub.callback(change)
            except Exception:
                logger.exception("Change callback failed for %s on %s", change.type, change.table)

    # --------------------------- session hooks ---------------------------
    def bind(self, session_factory):
        event.listen(session_factory, "after_flush", self._collect)
        event.listen(session_factory, "after_commit", self._flush_pending)
        event.listen(session_factory, "after_rollback", self._discard)
        return session_factory

    def _collect(self, session, flush_context):
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            pending.append(ChangeEvent(obj.__table__.name, INSERT, _snapshot(obj)))
        for obj in session.dirty:
            if session.is_modified(obj, include_collections=False):
                pending.append(ChangeEvent(obj.__table__.name, UPDATE, _snapshot(obj)))
        for obj in session.deleted:
            pending.append(ChangeEvent(obj.__table__.name, DELETE, _snapshot(obj)))

    def _flush_pending(self, session):
        for change in session.info.pop(_PENDING_KEY, []):
            self.publish(change)

    def _discard(self, session):
        session.info.pop(_PENDING_KEY, None)


def invalidate_on_change(feed: ChangeFeed, query_client, table: str, key=None) -> Subscription:
    """Mark the cached query `key` (default: the table name) stale on any change to `table`."""
    query_key = tuple(key) if key is not None else (table,)
    return feed.watch(table, lambda change: query_client.invalidate_queries(query_key))


def watch_realtime(feed: ChangeFeed, query_client) -> List[Subscription]:
    return [
        invalidate_on_change(feed, query_client, "products"),
        invalidate_on_change(feed, query_client, "orders"),
        invalidate_on_change(feed, query_client, "user_profiles"),
    ]
