from __future__ import annotations

MIN_CONTEXT_PROMPT_CHARS = 12

TRIVIAL_REQUESTS = {
    "yes",
    "no",
    "ok",
    "sure",
    "thanks",
    "y",
    "n",
    "yep",
    "nope",
    "yeah",
    "nah",
    "continue",
    "go ahead",
    "do it",
    "proceed",
}


def _normalize_request_text(text: str | None) -> str:
    if not text:
        return ""
    cleaned = " ".join(text.strip().split())
    return cleaned.lower()


def should_skip_context(prompt: str | None) -> bool:
    """True for prompts that are unlikely to need injected memory.

    Affirmations, slash commands and anything shorter than
    ``MIN_CONTEXT_PROMPT_CHARS`` after trimming.
    """

    stripped = (prompt or "").strip()
    if not stripped:
        return True
    if stripped.startswith("/"):
        return True
    if _normalize_request_text(stripped) in TRIVIAL_REQUESTS:
        return True
    return len(stripped) < MIN_CONTEXT_PROMPT_CHARS


def needs_refresh(has_snapshot: bool, is_stale: bool, force_refresh: bool) -> bool:
    return not has_snapshot or is_stale or force_refresh
