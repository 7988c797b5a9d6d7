from __future__ import annotations

from .store.types import ContextSnapshot

MAX_EXPLICIT_FACTS = 5
MAX_DEDUCTIVE_INSIGHTS = 3

ITEM_DELIMITER = "; "
SECTION_DELIMITER = " | "


def context_sections(snapshot: ContextSnapshot | None, dialectic: str | None = None) -> list[str]:
    sections: list[str] = []
    if snapshot is not None:
        facts = [fact for fact in snapshot.explicit_facts[:MAX_EXPLICIT_FACTS] if fact]
        if facts:
            sections.append(f"Relevant facts: {ITEM_DELIMITER.join(facts)}")
        insights = [
            item.conclusion
            for item in snapshot.deductive_insights[:MAX_DEDUCTIVE_INSIGHTS]
            if item.conclusion
        ]
        if insights:
            sections.append(f"Insights: {ITEM_DELIMITER.join(insights)}")
        if snapshot.peer_card_lines:
            sections.append(f"Profile: {ITEM_DELIMITER.join(snapshot.peer_card_lines)}")
    if dialectic and dialectic.strip():
        sections.append(f"Context: {dialectic.strip()}")
    return sections


def format_context(
    peer_name: str, snapshot: ContextSnapshot | None, dialectic: str | None = None
) -> str:
    """Render cached memory as one line of additional context.

    Returns "" when there is nothing to say; callers emit nothing in that case.
    """

    sections = context_sections(snapshot, dialectic)
    if not sections:
        return ""
    return f"[Honcho Memory for {peer_name}]: {SECTION_DELIMITER.join(sections)}"
