from __future__ import annotations

import sqlite3
from typing import Any

from .utils import iso_now

IDENTITY_WORKSPACE = "workspace"
IDENTITY_PEER = "peer"
IDENTITY_SESSION = "session"

IDENTITY_KINDS = (IDENTITY_WORKSPACE, IDENTITY_PEER, IDENTITY_SESSION)


def get_identity(conn: sqlite3.Connection, kind: str, key: str) -> str | None:
    row = conn.execute(
        "SELECT remote_id FROM identity_cache WHERE kind = ? AND key = ?",
        (kind, key),
    ).fetchone()
    if row is None:
        return None
    remote_id = row["remote_id"]
    return str(remote_id) if remote_id else None


def get_identity_name(conn: sqlite3.Connection, kind: str, key: str) -> str | None:
    row = conn.execute(
        "SELECT name FROM identity_cache WHERE kind = ? AND key = ?",
        (kind, key),
    ).fetchone()
    if row is None or not row["name"]:
        return None
    return str(row["name"])


def set_identity(
    conn: sqlite3.Connection,
    kind: str,
    key: str,
    remote_id: str,
    *,
    name: str | None = None,
) -> None:
    if kind not in IDENTITY_KINDS:
        raise ValueError(f"unknown identity kind: {kind}")
    if not remote_id:
        raise ValueError("remote_id is required")
    conn.execute(
        """
        INSERT INTO identity_cache(kind, key, remote_id, name, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(kind, key) DO UPDATE SET
            remote_id = excluded.remote_id,
            name = excluded.name,
            updated_at = excluded.updated_at
        """,
        (kind, key, remote_id, name, iso_now()),
    )
    conn.commit()


def identity_entries(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT kind, key, remote_id, name, updated_at FROM identity_cache ORDER BY kind, key"
    ).fetchall()
    return [dict(row) for row in rows]


def clear_identity(conn: sqlite3.Connection) -> int:
    cur = conn.execute("DELETE FROM identity_cache")
    conn.commit()
    return int(cur.rowcount or 0)
