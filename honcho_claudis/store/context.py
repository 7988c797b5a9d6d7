from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3

from .types import ContextSnapshot, RefreshPolicyState
from .utils import iso_now, parse_iso8601, to_iso

logger = logging.getLogger(__name__)

STALE_AFTER_S = 60
REFRESH_EVERY = 10


def get_snapshot(conn: sqlite3.Connection, scope: str) -> ContextSnapshot | None:
    row = conn.execute(
        "SELECT payload_json, fetched_at FROM context_snapshots WHERE scope = ?",
        (scope,),
    ).fetchone()
    if row is None:
        return None
    fetched_at = parse_iso8601(row["fetched_at"])
    try:
        payload = json.loads(row["payload_json"])
    except (TypeError, json.JSONDecodeError):
        payload = None
    if fetched_at is None or not isinstance(payload, dict):
        logger.warning(
            "context snapshot unreadable, treating as miss",
            extra={"event": "context.snapshot_corrupt", "scope": scope},
        )
        return None
    return ContextSnapshot.from_payload(payload, fetched_at)


def set_snapshot(conn: sqlite3.Connection, scope: str, snapshot: ContextSnapshot) -> None:
    conn.execute(
        """
        INSERT INTO context_snapshots(scope, payload_json, fetched_at)
        VALUES (?, ?, ?)
        ON CONFLICT(scope) DO UPDATE SET
            payload_json = excluded.payload_json,
            fetched_at = excluded.fetched_at
        """,
        (
            scope,
            json.dumps(snapshot.to_payload(), ensure_ascii=False),
            to_iso(snapshot.fetched_at),
        ),
    )
    conn.commit()


def snapshot_age_s(snapshot: ContextSnapshot, now: dt.datetime | None = None) -> float:
    current = now or dt.datetime.now(dt.UTC)
    return (current - snapshot.fetched_at).total_seconds()


def is_stale(
    conn: sqlite3.Connection,
    scope: str,
    *,
    stale_after_s: int = STALE_AFTER_S,
    now: dt.datetime | None = None,
) -> bool:
    snapshot = get_snapshot(conn, scope)
    if snapshot is None:
        return True
    return snapshot_age_s(snapshot, now) > stale_after_s


def refresh_state(conn: sqlite3.Connection, scope: str) -> RefreshPolicyState:
    row = conn.execute(
        "SELECT messages_since_refresh, last_refreshed_at FROM refresh_state WHERE scope = ?",
        (scope,),
    ).fetchone()
    if row is None:
        return RefreshPolicyState()
    return RefreshPolicyState(
        messages_since_last_refresh=int(row["messages_since_refresh"] or 0),
        last_refreshed_at=parse_iso8601(row["last_refreshed_at"]),
    )


def increment_message_count(conn: sqlite3.Connection, scope: str) -> int:
    # Single statement so parallel invocations cannot lose an increment.
    row = conn.execute(
        """
        INSERT INTO refresh_state(scope, messages_since_refresh, updated_at)
        VALUES (?, 1, ?)
        ON CONFLICT(scope) DO UPDATE SET
            messages_since_refresh = messages_since_refresh + 1,
            updated_at = excluded.updated_at
        RETURNING messages_since_refresh
        """,
        (scope, iso_now()),
    ).fetchone()
    conn.commit()
    if row is None:
        raise RuntimeError("Failed to increment message count")
    return int(row["messages_since_refresh"])


def should_force_refresh(
    conn: sqlite3.Connection, scope: str, *, refresh_every: int = REFRESH_EVERY
) -> bool:
    if refresh_every <= 0:
        return False
    return refresh_state(conn, scope).messages_since_last_refresh >= refresh_every


def acknowledge_refresh(
    conn: sqlite3.Connection, scope: str, *, now: dt.datetime | None = None
) -> None:
    stamp = to_iso(now) if now else iso_now()
    conn.execute(
        """
        INSERT INTO refresh_state(scope, messages_since_refresh, last_refreshed_at, updated_at)
        VALUES (?, 0, ?, ?)
        ON CONFLICT(scope) DO UPDATE SET
            messages_since_refresh = 0,
            last_refreshed_at = excluded.last_refreshed_at,
            updated_at = excluded.updated_at
        """,
        (scope, stamp, stamp),
    )
    conn.commit()


def clear_context(conn: sqlite3.Connection) -> int:
    cur = conn.execute("DELETE FROM context_snapshots")
    conn.execute("DELETE FROM refresh_state")
    conn.commit()
    return int(cur.rowcount or 0)
