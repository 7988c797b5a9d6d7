from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager, nullcontext
from typing import Any

from .types import DrainResult, QueuedMessage
from .utils import iso_now, to_iso

logger = logging.getLogger(__name__)

# A claimed entry is owned by one drain until the lease runs out; a process
# killed mid-upload leaves the claim behind, so it must expire.
CLAIM_LEASE_S = 120

ERROR_TEXT_LIMIT = 500


def enqueue(
    conn: sqlite3.Connection,
    *,
    content: str,
    author: str,
    location_key: str,
    metadata: dict[str, Any] | None = None,
    now: dt.datetime | None = None,
) -> int | None:
    """Append a message to the durable queue.

    This runs before any network I/O and must never raise: a broken store
    degrades to a logged no-op.
    """

    try:
        cur = conn.execute(
            """
            INSERT INTO message_queue(content, author, location_key, enqueued_at, metadata_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                content,
                author,
                location_key,
                to_iso(now) if now else iso_now(),
                json.dumps(metadata or {}, ensure_ascii=False),
            ),
        )
        conn.commit()
    except sqlite3.Error as exc:
        logger.warning(
            "message queue write failed",
            extra={"event": "queue.enqueue_failed", "location_key": location_key},
            exc_info=exc,
        )
        return None
    return int(cur.lastrowid) if cur.lastrowid is not None else None


def _row_to_message(row: sqlite3.Row) -> QueuedMessage:
    try:
        metadata = json.loads(row["metadata_json"] or "{}")
    except json.JSONDecodeError:
        metadata = {}
    if not isinstance(metadata, dict):
        metadata = {}
    return QueuedMessage(
        id=int(row["id"]),
        content=str(row["content"]),
        author=str(row["author"]),
        location_key=str(row["location_key"]),
        enqueued_at=str(row["enqueued_at"]),
        uploaded=bool(row["uploaded"]),
        uploaded_at=row["uploaded_at"],
        attempts=int(row["attempts"] or 0),
        last_error=row["last_error"],
        metadata=metadata,
    )


def pending_messages(
    conn: sqlite3.Connection,
    *,
    location_key: str | None = None,
    limit: int | None = None,
) -> list[QueuedMessage]:
    sql = "SELECT * FROM message_queue WHERE uploaded = 0"
    params: list[Any] = []
    if location_key is not None:
        sql += " AND location_key = ?"
        params.append(location_key)
    sql += " ORDER BY enqueued_at ASC, id ASC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_message(row) for row in conn.execute(sql, params).fetchall()]


def get_message(conn: sqlite3.Connection, message_id: int) -> QueuedMessage | None:
    row = conn.execute("SELECT * FROM message_queue WHERE id = ?", (message_id,)).fetchone()
    return _row_to_message(row) if row else None


def claim_message(
    conn: sqlite3.Connection, message_id: int, *, now: dt.datetime | None = None
) -> bool:
    current = now or dt.datetime.now(dt.UTC)
    lease_until = current + dt.timedelta(seconds=CLAIM_LEASE_S)
    row = conn.execute(
        """
        UPDATE message_queue
        SET claimed_until = ?, attempts = attempts + 1
        WHERE id = ? AND uploaded = 0 AND (claimed_until IS NULL OR claimed_until < ?)
        RETURNING id
        """,
        (to_iso(lease_until), message_id, to_iso(current)),
    ).fetchone()
    conn.commit()
    return row is not None


def mark_uploaded(
    conn: sqlite3.Connection, message_id: int, *, now: dt.datetime | None = None
) -> None:
    conn.execute(
        """
        UPDATE message_queue
        SET uploaded = 1, uploaded_at = ?, claimed_until = NULL, last_error = NULL
        WHERE id = ?
        """,
        (to_iso(now) if now else iso_now(), message_id),
    )
    conn.commit()


def release_failed(conn: sqlite3.Connection, message_id: int, error: str) -> None:
    conn.execute(
        "UPDATE message_queue SET claimed_until = NULL, last_error = ? WHERE id = ?",
        (error[:ERROR_TEXT_LIMIT], message_id),
    )
    conn.commit()


def drain(
    conn: sqlite3.Connection,
    uploader: Callable[[QueuedMessage], None],
    *,
    limit: int | None = None,
    lock: AbstractContextManager[Any] | None = None,
) -> DrainResult:
    """Upload pending messages oldest first.

    Each entry is marked uploaded only after its own upload succeeds. A failed
    entry keeps its place in the queue and does not stop the rest.
    """

    guard = lock if lock is not None else nullcontext()
    with guard:
        messages = pending_messages(conn, limit=limit)
    uploaded = 0
    failed = 0
    for message in messages:
        with guard:
            claimed = claim_message(conn, message.id)
        if not claimed:
            continue
        try:
            uploader(message)
        except Exception as exc:
            failed += 1
            logger.warning(
                "queued message upload failed",
                extra={
                    "event": "queue.upload_failed",
                    "message_id": message.id,
                    "location_key": message.location_key,
                    "attempts": message.attempts + 1,
                },
                exc_info=exc,
            )
            with guard:
                release_failed(conn, message.id, f"{exc.__class__.__name__}: {exc}")
            continue
        with guard:
            mark_uploaded(conn, message.id)
        uploaded += 1
    with guard:
        remaining = pending_count(conn)
    return DrainResult(uploaded=uploaded, failed=failed, remaining=remaining)


def pending_count(conn: sqlite3.Connection, location_key: str | None = None) -> int:
    if location_key is None:
        row = conn.execute("SELECT COUNT(*) AS n FROM message_queue WHERE uploaded = 0").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM message_queue WHERE uploaded = 0 AND location_key = ?",
            (location_key,),
        ).fetchone()
    return int(row["n"] or 0)


def status_counts(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT
            location_key,
            SUM(CASE WHEN uploaded = 0 THEN 1 ELSE 0 END) AS pending,
            SUM(CASE WHEN uploaded = 1 THEN 1 ELSE 0 END) AS uploaded,
            MAX(CASE WHEN uploaded = 0 THEN attempts ELSE 0 END) AS max_attempts,
            MIN(CASE WHEN uploaded = 0 THEN enqueued_at END) AS oldest_pending
        FROM message_queue
        GROUP BY location_key
        ORDER BY location_key
        """
    ).fetchall()
    return [
        {
            "location_key": row["location_key"],
            "pending": int(row["pending"] or 0),
            "uploaded": int(row["uploaded"] or 0),
            "max_attempts": int(row["max_attempts"] or 0),
            "oldest_pending": row["oldest_pending"],
        }
        for row in rows
    ]


def prune_uploaded(
    conn: sqlite3.Connection, *, older_than_days: int, now: dt.datetime | None = None
) -> int:
    """Delete entries whose upload was confirmed more than N days ago."""

    cutoff = (now or dt.datetime.now(dt.UTC)) - dt.timedelta(days=older_than_days)
    cur = conn.execute(
        "DELETE FROM message_queue WHERE uploaded = 1 AND uploaded_at < ?",
        (to_iso(cutoff),),
    )
    conn.commit()
    return int(cur.rowcount or 0)
