from __future__ import annotations

import pytest

from honcho_claudis.policy import needs_refresh, should_skip_context


@pytest.mark.parametrize(
    "prompt",
    [
        "",
        "   ",
        "yes",
        "OK",
        "  thanks ",
        "go   ahead",
        "/compact",
        "/clear the whole conversation now",
        "hi there",
    ],
)
def test_should_skip_context_for_trivial_prompts(prompt: str) -> None:
    assert should_skip_context(prompt) is True


@pytest.mark.parametrize(
    "prompt",
    [
        "can you look at the auth module and explain the token refresh flow",
        "refactor the parser",
    ],
)
def test_should_not_skip_substantive_prompts(prompt: str) -> None:
    assert should_skip_context(prompt) is False


@pytest.mark.parametrize(
    ("has_snapshot", "is_stale", "force", "expected"),
    [
        (False, False, False, True),
        (True, True, False, True),
        (True, False, True, True),
        (True, False, False, False),
    ],
)
def test_needs_refresh(has_snapshot: bool, is_stale: bool, force: bool, expected: bool) -> None:
    assert needs_refresh(has_snapshot, is_stale, force) is expected
