"""Process-wide ConversationEngine used by the AI endpoints."""

from __future__ import annotations

from worksheets.llm.conversation import ConversationEngine

_engine: ConversationEngine | None = None


def get_engine() -> ConversationEngine:
    """Get the global conversation engine instance."""
    global _engine
    if _engine is None:
        _engine = ConversationEngine()
    return _engine


def set_engine(engine: ConversationEngine) -> None:
    """Replace the global engine (tests inject one with a mocked client)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    global _engine
    _engine = None
