from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from .. import db
from . import context as store_context
from . import identity as store_identity
from . import queue as store_queue
from .types import ContextSnapshot, DrainResult, QueuedMessage, RefreshPolicyState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheStore:
    """Local persisted state: message queue, identity cache, context cache.

    Every public method degrades instead of raising on ``sqlite3.Error``; the
    hook must keep going when the local store is broken.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        stale_after_s: int = store_context.STALE_AFTER_S,
        refresh_every: int = store_context.REFRESH_EVERY,
    ):
        self.db_path = db_path
        self.stale_after_s = stale_after_s
        self.refresh_every = refresh_every
        # The upload thread and the context path share one connection.
        self._lock = threading.RLock()
        self.conn = db.connect(db_path, check_same_thread=False)
        try:
            db.initialize_schema(self.conn)
        except sqlite3.Error:
            self.conn.close()
            raise

    @classmethod
    def open_or_memory(cls, db_path: Path | str, **kwargs: Any) -> CacheStore:
        try:
            return cls(db_path, **kwargs)
        except (sqlite3.Error, OSError) as exc:
            logger.warning(
                "cache store unavailable, using in-memory store",
                extra={"event": "store.open_failed", "db_path": str(db_path)},
                exc_info=exc,
            )
            return cls(db.MEMORY_DB, **kwargs)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _guarded(self, default: T, event: str, fn: Callable[[], T]) -> T:
        try:
            with self._lock:
                return fn()
        except sqlite3.Error as exc:
            logger.warning(
                "cache store operation failed",
                extra={"event": event, "db_path": str(self.db_path)},
                exc_info=exc,
            )
            return default

    # Message queue

    def enqueue(
        self,
        content: str,
        author: str,
        location_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> int | None:
        with self._lock:
            return store_queue.enqueue(
                self.conn,
                content=content,
                author=author,
                location_key=location_key,
                metadata=metadata,
            )

    def drain(
        self, uploader: Callable[[QueuedMessage], None], *, limit: int | None = None
    ) -> DrainResult:
        # Not wrapped in _guarded: the lock is taken per statement so uploads
        # do not block the context path.
        try:
            return store_queue.drain(self.conn, uploader, limit=limit, lock=self._lock)
        except sqlite3.Error as exc:
            logger.warning(
                "cache store operation failed",
                extra={"event": "queue.drain_failed", "db_path": str(self.db_path)},
                exc_info=exc,
            )
            return DrainResult()

    def pending_messages(
        self, *, location_key: str | None = None, limit: int | None = None
    ) -> list[QueuedMessage]:
        return self._guarded(
            [],
            "queue.read_failed",
            lambda: store_queue.pending_messages(
                self.conn, location_key=location_key, limit=limit
            ),
        )

    def get_message(self, message_id: int) -> QueuedMessage | None:
        return self._guarded(
            None, "queue.read_failed", lambda: store_queue.get_message(self.conn, message_id)
        )

    def queue_status(self) -> list[dict[str, Any]]:
        return self._guarded([], "queue.read_failed", lambda: store_queue.status_counts(self.conn))

    def prune_uploaded(self, *, older_than_days: int) -> int:
        return self._guarded(
            0,
            "queue.prune_failed",
            lambda: store_queue.prune_uploaded(self.conn, older_than_days=older_than_days),
        )

    # Identity cache

    def get_workspace_id(self, name: str) -> str | None:
        return self._guarded(
            None,
            "identity.read_failed",
            lambda: store_identity.get_identity(self.conn, store_identity.IDENTITY_WORKSPACE, name),
        )

    def set_workspace_id(self, name: str, remote_id: str) -> None:
        self._guarded(
            None,
            "identity.write_failed",
            lambda: store_identity.set_identity(
                self.conn, store_identity.IDENTITY_WORKSPACE, name, remote_id, name=name
            ),
        )

    def get_peer_id(self, name: str) -> str | None:
        return self._guarded(
            None,
            "identity.read_failed",
            lambda: store_identity.get_identity(self.conn, store_identity.IDENTITY_PEER, name),
        )

    def set_peer_id(self, name: str, remote_id: str) -> None:
        self._guarded(
            None,
            "identity.write_failed",
            lambda: store_identity.set_identity(
                self.conn, store_identity.IDENTITY_PEER, name, remote_id, name=name
            ),
        )

    def get_session_id(self, path: str) -> str | None:
        return self._guarded(
            None,
            "identity.read_failed",
            lambda: store_identity.get_identity(self.conn, store_identity.IDENTITY_SESSION, path),
        )

    def get_session_name(self, path: str) -> str | None:
        return self._guarded(
            None,
            "identity.read_failed",
            lambda: store_identity.get_identity_name(
                self.conn, store_identity.IDENTITY_SESSION, path
            ),
        )

    def set_session_id(self, path: str, session_name: str, remote_id: str) -> None:
        self._guarded(
            None,
            "identity.write_failed",
            lambda: store_identity.set_identity(
                self.conn, store_identity.IDENTITY_SESSION, path, remote_id, name=session_name
            ),
        )

    def identity_entries(self) -> list[dict[str, Any]]:
        return self._guarded(
            [], "identity.read_failed", lambda: store_identity.identity_entries(self.conn)
        )

    def clear_identity(self) -> int:
        return self._guarded(
            0, "identity.clear_failed", lambda: store_identity.clear_identity(self.conn)
        )

    # Context cache and refresh policy

    def get_snapshot(self, scope: str) -> ContextSnapshot | None:
        return self._guarded(
            None, "context.read_failed", lambda: store_context.get_snapshot(self.conn, scope)
        )

    def has_snapshot(self, scope: str) -> bool:
        return self.get_snapshot(scope) is not None

    def set_snapshot(self, scope: str, snapshot: ContextSnapshot) -> None:
        self._guarded(
            None,
            "context.write_failed",
            lambda: store_context.set_snapshot(self.conn, scope, snapshot),
        )

    def is_stale(self, scope: str, now: dt.datetime | None = None) -> bool:
        return self._guarded(
            True,
            "context.read_failed",
            lambda: store_context.is_stale(
                self.conn, scope, stale_after_s=self.stale_after_s, now=now
            ),
        )

    def refresh_state(self, scope: str) -> RefreshPolicyState:
        return self._guarded(
            RefreshPolicyState(),
            "context.read_failed",
            lambda: store_context.refresh_state(self.conn, scope),
        )

    def increment_message_count(self, scope: str) -> int:
        return self._guarded(
            0,
            "context.counter_failed",
            lambda: store_context.increment_message_count(self.conn, scope),
        )

    def should_force_refresh(self, scope: str) -> bool:
        return self._guarded(
            False,
            "context.read_failed",
            lambda: store_context.should_force_refresh(
                self.conn, scope, refresh_every=self.refresh_every
            ),
        )

    def acknowledge_refresh(self, scope: str, now: dt.datetime | None = None) -> None:
        self._guarded(
            None,
            "context.counter_failed",
            lambda: store_context.acknowledge_refresh(self.conn, scope, now=now),
        )

    def clear_context(self) -> int:
        return self._guarded(0, "context.clear_failed", lambda: store_context.clear_context(self.conn))
