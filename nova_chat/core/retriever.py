"""RelevanceRetriever: find past exchanges that share words with the prompt."""

from __future__ import annotations

import logging
import re

from ..types import (
    EPHEMERAL,
    ContextSnippet,
    Narrative,
    RetrieverConfig,
    Role,
    Session,
)

logger = logging.getLogger(__name__)

# Signed decimals with optional exponent, or unsigned 0x / 0o / 0b literals.
# Words are lowercased first, so "infinity" and "nan" stay words.
_NUMERIC_RE = re.compile(
    r"^(?:"
    r"0[xX][0-9a-fA-F]+"
    r"|0[oO][0-7]+"
    r"|0[bB][01]+"
    r"|[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
    r")$"
)

CONTEXT_HEADER = "\n\n**Relevant information from past conversations:**\n"
SNIPPET_SEPARATOR = "\n---\n"


def is_numeric(word: str) -> bool:
    return bool(_NUMERIC_RE.match(word))


class RelevanceRetriever:
    """Bag-of-words overlap between the prompt and past user messages.

    Sessions are scanned newest first (ids sort by creation time), and so
    are the messages within each session, so results are most recent first.
    A past user message qualifies when it shares at least
    ``min_shared_words`` prompt words; the model reply right after it rides
    along.
    """

    def __init__(self, config: RetrieverConfig | None = None) -> None:
        self.config = config or RetrieverConfig()

    def prompt_words(self, text: str) -> set[str]:
        return {
            w for w in text.lower().split()
            if len(w) >= self.config.min_word_length and not is_numeric(w)
        }

    def find(self, prompt_text: str, sessions: list[Session]) -> list[ContextSnippet]:
        words = self.prompt_words(prompt_text)
        cap = self.config.max_snippets
        if not words or cap <= 0:
            return []

        snippets: list[ContextSnippet] = []
        ordered = sorted(
            (s for s in sessions if not s.ephemeral and s.id != EPHEMERAL),
            key=lambda s: s.id,
            reverse=True,
        )
        for session in ordered:
            messages = session.messages
            for i in range(len(messages) - 1, -1, -1):
                msg = messages[i]
                if msg.role != Role.USER or not isinstance(msg.content, Narrative):
                    continue
                shared = words & set(msg.content.text.lower().split())
                if len(shared) < self.config.min_shared_words:
                    continue
                reply = None
                if i + 1 < len(messages):
                    nxt = messages[i + 1]
                    if nxt.role == Role.MODEL and isinstance(nxt.content, Narrative):
                        reply = nxt.content.text
                snippets.append(ContextSnippet(
                    user_text=msg.content.text,
                    model_text=reply,
                    session_id=session.id,
                ))
                if len(snippets) >= cap:
                    logger.debug("Retriever hit cap of %d snippets", cap)
                    return snippets
        return snippets

    @staticmethod
    def format_block(snippets: list[ContextSnippet]) -> str:
        """Render snippets as the directive's past-conversation block."""
        if not snippets:
            return ""
        parts = []
        for snippet in snippets:
            part = f'User: "{snippet.user_text}"'
            if snippet.model_text is not None:
                part += f'\nAssistant: "{snippet.model_text}"'
            parts.append(part)
        return CONTEXT_HEADER + SNIPPET_SEPARATOR.join(parts)
