from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..store.types import ContextSnapshot, DeductiveInsight


class HonchoAPIError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None, path: str | None = None):
        super().__init__(message)
        self.status = status
        self.path = path


def _require_id(payload: dict[str, Any], what: str) -> str:
    value = payload.get("id")
    if not isinstance(value, str) or not value:
        raise HonchoAPIError(f"{what} response missing id")
    return value


def _metadata(payload: dict[str, Any]) -> dict[str, Any]:
    value = payload.get("metadata")
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class WorkspaceResult:
    id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WorkspaceResult:
        return cls(id=_require_id(payload, "workspace"), metadata=_metadata(payload))


@dataclass(frozen=True)
class PeerResult:
    id: str
    workspace_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PeerResult:
        workspace_id = payload.get("workspace_id")
        return cls(
            id=_require_id(payload, "peer"),
            workspace_id=workspace_id if isinstance(workspace_id, str) else None,
        )


@dataclass(frozen=True)
class SessionResult:
    id: str
    workspace_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SessionResult:
        workspace_id = payload.get("workspace_id")
        return cls(
            id=_require_id(payload, "session"),
            workspace_id=workspace_id if isinstance(workspace_id, str) else None,
            metadata=_metadata(payload),
        )


@dataclass(frozen=True)
class MessageCreateResult:
    message_ids: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> MessageCreateResult:
        # The batch endpoint answers with a bare list of created messages.
        items = payload if isinstance(payload, list) else []
        ids = tuple(
            str(item["id"]) for item in items if isinstance(item, dict) and item.get("id")
        )
        return cls(message_ids=ids)


def _observation_text(item: Any) -> str | None:
    if isinstance(item, str):
        return item.strip() or None
    if isinstance(item, dict):
        content = item.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def _premises(item: dict[str, Any]) -> tuple[str, ...]:
    premises = item.get("premises")
    if not isinstance(premises, list):
        return ()
    return tuple(text for text in (_observation_text(p) for p in premises) if text)


@dataclass(frozen=True)
class ContextResult:
    explicit: tuple[str, ...] = ()
    deductive: tuple[DeductiveInsight, ...] = ()
    peer_card: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> ContextResult:
        if not isinstance(payload, dict):
            return cls()
        representation = payload.get("representation")
        if not isinstance(representation, dict):
            representation = {}
        explicit_raw = representation.get("explicit")
        explicit = tuple(
            text
            for text in (
                _observation_text(item)
                for item in (explicit_raw if isinstance(explicit_raw, list) else [])
            )
            if text
        )
        deductive: list[DeductiveInsight] = []
        deductive_raw = representation.get("deductive")
        for item in deductive_raw if isinstance(deductive_raw, list) else []:
            if not isinstance(item, dict):
                continue
            conclusion = item.get("conclusion")
            if not isinstance(conclusion, str) or not conclusion.strip():
                continue
            deductive.append(
                DeductiveInsight(conclusion=conclusion.strip(), premises=_premises(item))
            )
        card_raw = payload.get("peer_card")
        peer_card = tuple(
            line.strip()
            for line in (card_raw if isinstance(card_raw, list) else [])
            if isinstance(line, str) and line.strip()
        )
        return cls(explicit=explicit, deductive=tuple(deductive), peer_card=peer_card)

    def to_snapshot(self, **kwargs: Any) -> ContextSnapshot:
        return ContextSnapshot(
            explicit_facts=self.explicit,
            deductive_insights=self.deductive,
            peer_card_lines=self.peer_card,
            **kwargs,
        )


@dataclass(frozen=True)
class ChatResult:
    content: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> ChatResult:
        if not isinstance(payload, dict):
            return cls()
        content = payload.get("content")
        if isinstance(content, str) and content.strip():
            return cls(content=content.strip())
        return cls()
