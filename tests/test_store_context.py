from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from honcho_claudis.store import CacheStore, ContextSnapshot, DeductiveInsight
from honcho_claudis.store import identity as store_identity

SCOPE = "/work/parser"


def _snapshot(fetched_at: dt.datetime) -> ContextSnapshot:
    return ContextSnapshot(
        explicit_facts=("Eri prefers pytest", "Eri works on a parser"),
        deductive_insights=(
            DeductiveInsight(conclusion="Eri values tests", premises=("Eri prefers pytest",)),
        ),
        peer_card_lines=("Name: Eri",),
        fetched_at=fetched_at,
    )


def test_snapshot_round_trips_through_store(tmp_path: Path) -> None:
    fetched_at = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.UTC)
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        store.set_snapshot(SCOPE, _snapshot(fetched_at))
        loaded = store.get_snapshot(SCOPE)
    finally:
        store.close()

    assert loaded == _snapshot(fetched_at)


def test_missing_snapshot_is_stale(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        assert store.get_snapshot(SCOPE) is None
        assert store.has_snapshot(SCOPE) is False
        assert store.is_stale(SCOPE) is True
    finally:
        store.close()


def test_staleness_uses_strict_window(tmp_path: Path) -> None:
    fetched_at = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.UTC)
    store = CacheStore(tmp_path / "cache.sqlite", stale_after_s=60)
    try:
        store.set_snapshot(SCOPE, _snapshot(fetched_at))
        assert store.is_stale(SCOPE, now=fetched_at + dt.timedelta(seconds=59)) is False
        assert store.is_stale(SCOPE, now=fetched_at + dt.timedelta(seconds=60)) is False
        assert store.is_stale(SCOPE, now=fetched_at + dt.timedelta(seconds=61)) is True
    finally:
        store.close()


def test_snapshots_are_scoped_per_directory(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        store.set_snapshot(SCOPE, _snapshot(dt.datetime.now(dt.UTC)))
        assert store.get_snapshot("/work/other") is None
    finally:
        store.close()


def test_force_refresh_after_threshold(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite", refresh_every=10)
    try:
        for _ in range(9):
            store.increment_message_count(SCOPE)
        assert store.should_force_refresh(SCOPE) is False
        assert store.increment_message_count(SCOPE) == 10
        assert store.should_force_refresh(SCOPE) is True

        acknowledged_at = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.UTC)
        store.acknowledge_refresh(SCOPE, now=acknowledged_at)
        state = store.refresh_state(SCOPE)
        assert state.messages_since_last_refresh == 0
        assert state.last_refreshed_at == acknowledged_at
        assert store.should_force_refresh(SCOPE) is False
    finally:
        store.close()


def test_counter_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.sqlite"
    store = CacheStore(db_path)
    store.increment_message_count(SCOPE)
    store.increment_message_count(SCOPE)
    store.close()

    reopened = CacheStore(db_path)
    try:
        assert reopened.increment_message_count(SCOPE) == 3
    finally:
        reopened.close()


def test_non_positive_threshold_never_forces(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite", refresh_every=0)
    try:
        for _ in range(25):
            store.increment_message_count(SCOPE)
        assert store.should_force_refresh(SCOPE) is False
    finally:
        store.close()


def test_corrupt_snapshot_is_a_miss(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        store.conn.execute(
            "INSERT INTO context_snapshots(scope, payload_json, fetched_at) VALUES (?, ?, ?)",
            (SCOPE, "{not json", "2026-03-01T12:00:00+00:00"),
        )
        store.conn.commit()
        assert store.get_snapshot(SCOPE) is None
        assert store.is_stale(SCOPE) is True
    finally:
        store.close()


def test_broken_store_degrades_to_safe_defaults(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    store.close()

    assert store.get_snapshot(SCOPE) is None
    assert store.is_stale(SCOPE) is True
    assert store.increment_message_count(SCOPE) == 0
    assert store.should_force_refresh(SCOPE) is False
    store.acknowledge_refresh(SCOPE)
    store.set_snapshot(SCOPE, _snapshot(dt.datetime.now(dt.UTC)))


def test_clear_context_keeps_queue(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        store.enqueue("keep me queued please", "eri", SCOPE)
        store.set_snapshot(SCOPE, _snapshot(dt.datetime.now(dt.UTC)))
        store.increment_message_count(SCOPE)
        cleared = store.clear_context()
        pending = store.pending_messages()
        state = store.refresh_state(SCOPE)
    finally:
        store.close()

    assert cleared == 1
    assert len(pending) == 1
    assert state.messages_since_last_refresh == 0


def test_identity_cache_round_trip(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.sqlite"
    store = CacheStore(db_path)
    store.set_workspace_id("eri-code", "ws_1")
    store.set_peer_id("eri", "peer_1")
    store.set_session_id(SCOPE, "project-parser", "sess_1")
    store.close()

    reopened = CacheStore(db_path)
    try:
        assert reopened.get_workspace_id("eri-code") == "ws_1"
        assert reopened.get_peer_id("eri") == "peer_1"
        assert reopened.get_session_id(SCOPE) == "sess_1"
        assert reopened.get_session_name(SCOPE) == "project-parser"
        assert reopened.get_session_id("/work/other") is None
        kinds = sorted(entry["kind"] for entry in reopened.identity_entries())
    finally:
        reopened.close()

    assert kinds == ["peer", "session", "workspace"]


def test_identity_set_overwrites_and_clear_removes(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        store.set_session_id(SCOPE, "project-parser", "sess_1")
        store.set_session_id(SCOPE, "renamed", "sess_2")
        assert store.get_session_id(SCOPE) == "sess_2"
        assert store.get_session_name(SCOPE) == "renamed"
        assert store.clear_identity() == 1
        assert store.get_session_id(SCOPE) is None
    finally:
        store.close()


def test_identity_rejects_unknown_kind_and_empty_id(tmp_path: Path) -> None:
    store = CacheStore(tmp_path / "cache.sqlite")
    try:
        with pytest.raises(ValueError, match="unknown identity kind"):
            store_identity.set_identity(store.conn, "team", "x", "id_1")
        with pytest.raises(ValueError, match="remote_id"):
            store_identity.set_identity(store.conn, store_identity.IDENTITY_PEER, "eri", "")
    finally:
        store.close()
