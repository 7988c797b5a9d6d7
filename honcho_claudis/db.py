from __future__ import annotations

import sqlite3
from pathlib import Path

from .config import DEFAULT_CONFIG_DIR

DEFAULT_DB_PATH = DEFAULT_CONFIG_DIR / "cache.sqlite"

MEMORY_DB = ":memory:"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    if str(db_path) == MEMORY_DB:
        conn = sqlite3.connect(MEMORY_DB, check_same_thread=check_same_thread)
    else:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=check_same_thread, timeout=5.0)
    conn.row_factory = sqlite3.Row
    try:
        # Parallel hook invocations wait for the writer instead of failing.
        conn.execute("PRAGMA busy_timeout = 5000")
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS message_queue (
            id INTEGER PRIMARY KEY,
            content TEXT NOT NULL,
            author TEXT NOT NULL,
            location_key TEXT NOT NULL,
            enqueued_at TEXT NOT NULL,
            uploaded INTEGER NOT NULL DEFAULT 0,
            uploaded_at TEXT,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            claimed_until TEXT,
            metadata_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_message_queue_pending
            ON message_queue(uploaded, enqueued_at, id);
        CREATE INDEX IF NOT EXISTS idx_message_queue_location
            ON message_queue(location_key, uploaded);

        CREATE TABLE IF NOT EXISTS identity_cache (
            kind TEXT NOT NULL,
            key TEXT NOT NULL,
            remote_id TEXT NOT NULL,
            name TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (kind, key)
        );

        CREATE TABLE IF NOT EXISTS context_snapshots (
            scope TEXT PRIMARY KEY,
            payload_json TEXT NOT NULL,
            fetched_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS refresh_state (
            scope TEXT PRIMARY KEY,
            messages_since_refresh INTEGER NOT NULL DEFAULT 0,
            last_refreshed_at TEXT,
            updated_at TEXT NOT NULL
        );
        """
    )
    conn.commit()
