from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest

from honcho_claudis.remote import (
    ChatResult,
    ContextResult,
    HonchoAPIError,
    MessageCreateResult,
    PeerResult,
    SessionResult,
    WorkspaceResult,
)


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HONCHO_CLAUDIS_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("HONCHO_CLAUDIS_CACHE_PATH", str(tmp_path / "config" / "cache.sqlite"))
    monkeypatch.setenv("HONCHO_CLAUDIS_HOOK_LOG", "")
    for name in (
        "HONCHO_CLAUDIS_API_KEY",
        "HONCHO_CLAUDIS_BASE_URL",
        "HONCHO_CLAUDIS_CONTEXT_STALE_AFTER_S",
        "HONCHO_CLAUDIS_REFRESH_EVERY_MESSAGES",
        "HONCHO_CLAUDIS_DIALECTIC_ON_PROMPT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config" / "config.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                "peerName": "eri",
                "apiKey": "hch-test",
                "workspace": "eri-code",
                "claudePeer": "claudis",
            }
        )
    )
    return path


class FakeHonchoClient:
    """Records every call as (thread name, operation) and answers from canned data."""

    def __init__(
        self,
        *,
        context_payload: dict[str, Any] | None = None,
        chat_content: str | None = None,
        fail: set[str] | None = None,
    ) -> None:
        self.context_payload = context_payload or {}
        self.chat_content = chat_content
        self.fail = fail or set()
        self.calls: list[tuple[str, str]] = []
        self.messages: list[dict[str, Any]] = []
        self.context_queries: list[str] = []
        self.context_peers: list[str] = []
        self._lock = threading.Lock()

    def __enter__(self) -> FakeHonchoClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def close(self) -> None:
        return None

    def _record(self, op: str) -> None:
        with self._lock:
            self.calls.append((threading.current_thread().name, op))
        if op in self.fail:
            raise HonchoAPIError(f"{op} failed", status=503)

    def ops(self, thread_prefix: str | None = None) -> list[str]:
        with self._lock:
            return [
                op
                for name, op in self.calls
                if thread_prefix is None or name.startswith(thread_prefix)
            ]

    def get_or_create_workspace(
        self, name: str, *, metadata: dict[str, Any] | None = None
    ) -> WorkspaceResult:
        self._record("workspace")
        return WorkspaceResult(id=f"ws_{name}")

    def get_or_create_peer(self, workspace_id: str, name: str) -> PeerResult:
        self._record("peer")
        return PeerResult(id=f"peer_{name}", workspace_id=workspace_id)

    def get_or_create_session(
        self, workspace_id: str, name: str, *, metadata: dict[str, Any] | None = None
    ) -> SessionResult:
        self._record("session")
        return SessionResult(id=f"sess_{name}", workspace_id=workspace_id, metadata=metadata or {})

    def create_messages(
        self, workspace_id: str, session_id: str, messages: list[dict[str, Any]]
    ) -> MessageCreateResult:
        self._record("messages")
        with self._lock:
            for message in messages:
                self.messages.append(
                    {"workspace_id": workspace_id, "session_id": session_id, **message}
                )
        return MessageCreateResult(message_ids=tuple(f"msg_{i}" for i in range(len(messages))))

    def get_peer_context(self, workspace_id: str, peer_id: str, **kwargs: Any) -> ContextResult:
        self._record("context")
        with self._lock:
            self.context_queries.append(kwargs.get("search_query", ""))
            self.context_peers.append(peer_id)
        return ContextResult.from_payload(self.context_payload)

    def chat(
        self, workspace_id: str, peer_id: str, *, query: str, session_id: str | None = None
    ) -> ChatResult:
        self._record("chat")
        return ChatResult(content=self.chat_content)


@pytest.fixture
def fake_client_cls() -> type[FakeHonchoClient]:
    return FakeHonchoClient
