from __future__ import annotations

from .http_client import HonchoClient
from .types import (
    ChatResult,
    ContextResult,
    HonchoAPIError,
    MessageCreateResult,
    PeerResult,
    SessionResult,
    WorkspaceResult,
)

__all__ = [
    "ChatResult",
    "ContextResult",
    "HonchoAPIError",
    "HonchoClient",
    "MessageCreateResult",
    "PeerResult",
    "SessionResult",
    "WorkspaceResult",
]
