from __future__ import annotations

from ._store import CacheStore
from .types import (
    ContextSnapshot,
    DeductiveInsight,
    DrainResult,
    QueuedMessage,
    RefreshPolicyState,
    StateStore,
)

__all__ = [
    "CacheStore",
    "ContextSnapshot",
    "DeductiveInsight",
    "DrainResult",
    "QueuedMessage",
    "RefreshPolicyState",
    "StateStore",
]
