from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class DeductiveInsight:
    conclusion: str
    premises: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContextSnapshot:
    explicit_facts: tuple[str, ...] = ()
    deductive_insights: tuple[DeductiveInsight, ...] = ()
    peer_card_lines: tuple[str, ...] = ()
    fetched_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.UTC))

    def is_empty(self) -> bool:
        return not (self.explicit_facts or self.deductive_insights or self.peer_card_lines)

    def to_payload(self) -> dict[str, Any]:
        return {
            "explicit_facts": list(self.explicit_facts),
            "deductive_insights": [
                {"conclusion": item.conclusion, "premises": list(item.premises)}
                for item in self.deductive_insights
            ],
            "peer_card_lines": list(self.peer_card_lines),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], fetched_at: dt.datetime) -> ContextSnapshot:
        insights: list[DeductiveInsight] = []
        for item in payload.get("deductive_insights") or []:
            if not isinstance(item, dict):
                continue
            conclusion = item.get("conclusion")
            if not isinstance(conclusion, str) or not conclusion.strip():
                continue
            premises = tuple(p for p in item.get("premises") or [] if isinstance(p, str))
            insights.append(DeductiveInsight(conclusion=conclusion, premises=premises))
        return cls(
            explicit_facts=_str_tuple(payload.get("explicit_facts")),
            deductive_insights=tuple(insights),
            peer_card_lines=_str_tuple(payload.get("peer_card_lines")),
            fetched_at=fetched_at,
        )


def _str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item.strip())


@dataclass(frozen=True)
class QueuedMessage:
    id: int
    content: str
    author: str
    location_key: str
    enqueued_at: str
    uploaded: bool = False
    uploaded_at: str | None = None
    attempts: int = 0
    last_error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefreshPolicyState:
    messages_since_last_refresh: int = 0
    last_refreshed_at: dt.datetime | None = None


@dataclass(frozen=True)
class DrainResult:
    uploaded: int = 0
    failed: int = 0
    remaining: int = 0


class StateStore(Protocol):
    """Everything the prompt handler needs from local persisted state."""

    def enqueue(
        self,
        content: str,
        author: str,
        location_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> int | None: ...

    def drain(
        self, uploader: Callable[[QueuedMessage], None], *, limit: int | None = None
    ) -> DrainResult: ...

    def get_workspace_id(self, name: str) -> str | None: ...

    def set_workspace_id(self, name: str, remote_id: str) -> None: ...

    def get_peer_id(self, name: str) -> str | None: ...

    def set_peer_id(self, name: str, remote_id: str) -> None: ...

    def get_session_id(self, path: str) -> str | None: ...

    def get_session_name(self, path: str) -> str | None: ...

    def set_session_id(self, path: str, session_name: str, remote_id: str) -> None: ...

    def get_snapshot(self, scope: str) -> ContextSnapshot | None: ...

    def set_snapshot(self, scope: str, snapshot: ContextSnapshot) -> None: ...

    def is_stale(self, scope: str, now: dt.datetime | None = None) -> bool: ...

    def increment_message_count(self, scope: str) -> int: ...

    def should_force_refresh(self, scope: str) -> bool: ...

    def acknowledge_refresh(self, scope: str, now: dt.datetime | None = None) -> None: ...
