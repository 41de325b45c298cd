"""Small LLM-backed helpers: profile extraction and image prompt enhancement."""

from __future__ import annotations

import json
import logging

from ..types import LLMProvider, NovaChatError

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM = (
    "You extract personal information about the user from a conversation turn. "
    "Reply with ONLY a JSON object with the optional keys: "
    '"name" (string), "profession" (string), "interests" (list of strings), '
    '"facts" (list of strings). Omit keys you know nothing about.'
)

ENHANCE_SYSTEM = (
    "You enhance prompts for an AI image generator. Make the prompt vivid, detailed "
    "and imaginative. Return ONLY the enhanced prompt, without any other text."
)


def parse_json_object(text: str) -> dict:
    """Parse the outermost ``{...}`` span of *text*; empty dict when absent."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return {}
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class LLMProfileExtractor:
    """Ask a completion model for the profile facts revealed in one turn."""

    def __init__(self, llm: LLMProvider, max_tokens: int = 300) -> None:
        self.llm = llm
        self.max_tokens = max_tokens

    def extract(self, prompt: str, reply: str) -> dict:
        user = f'User Prompt: "{prompt}"\nAI Response: "{reply}"'
        text = self.llm.complete(EXTRACTION_SYSTEM, user, self.max_tokens)
        result = parse_json_object(text)
        logger.debug("Extracted profile keys: %s", sorted(result))
        return result


class ImagePromptEnhancer:
    """Rewrite an image prompt in a given style; the original is kept on failure."""

    def __init__(self, llm: LLMProvider, style: str = "cinematic", max_tokens: int = 200) -> None:
        self.llm = llm
        self.style = style
        self.max_tokens = max_tokens

    def enhance(self, prompt: str) -> str:
        user = f'Desired style: "{self.style}". User prompt: "{prompt}"'
        try:
            enhanced = self.llm.complete(ENHANCE_SYSTEM, user, self.max_tokens).strip()
        except NovaChatError as e:
            logger.warning("Image prompt enhancement failed: %s", e)
            return prompt
        return enhanced or prompt
