"""GenericOpenAIProvider: OpenAI-compatible endpoint via httpx.

Works with OpenAI, Ollama, vLLM, LM Studio, or any server exposing
``/chat/completions``. Implements streaming chat, plain completion and
``/images/generations``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator

import httpx

from .base import BaseProvider
from ..types import (
    Artifact,
    ChatSettings,
    Message,
    ProviderConfig,
    ProviderError,
    Role,
    Source,
    StreamChunk,
)

logger = logging.getLogger(__name__)

ASPECT_RATIO_SIZES = {
    "1:1": "1024x1024",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
}


def message_to_openai(message: Message) -> dict:
    role = "assistant" if message.role == Role.MODEL else "user"
    if isinstance(message.content, Artifact):
        text = json.dumps(message.content.as_dict(), ensure_ascii=False)
    else:
        text = message.content.text
    return {"role": role, "content": text}


def parts_to_openai(parts: list[dict]) -> str | list[dict]:
    """Convert ``{"text"}`` / ``{"inline_data"}`` parts to OpenAI content."""
    if all("text" in p for p in parts):
        return "\n".join(p["text"] for p in parts)
    content: list[dict] = []
    for part in parts:
        if "text" in part:
            content.append({"type": "text", "text": part["text"]})
        elif "inline_data" in part:
            blob = part["inline_data"]
            url = f"data:{blob.get('mime_type', 'image/png')};base64,{blob.get('data', '')}"
            content.append({"type": "image_url", "image_url": {"url": url}})
    return content


def extract_sources(data: dict) -> list[Source]:
    """Citations from a streamed chunk (``annotations`` or top-level ``citations``)."""
    sources: list[Source] = []
    for uri in data.get("citations", []) or []:
        if isinstance(uri, str):
            sources.append(Source(uri=uri))
    for choice in data.get("choices", []) or []:
        delta = choice.get("delta", {}) or {}
        for ann in delta.get("annotations", []) or []:
            cite = ann.get("url_citation") if isinstance(ann, dict) else None
            if cite and cite.get("url"):
                sources.append(Source(uri=cite["url"], title=cite.get("title", "") or ""))
    return sources


class GenericOpenAIProvider(BaseProvider):
    """Model stream, LLM provider and image generator over one endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        api_key: str = "not-needed",
        max_tokens: int = 4096,
        image_model: str = "gpt-image-1",
        search_model: str = "",
        timeout: float = 120.0,
    ) -> None:
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.image_model = image_model
        self.search_model = search_model
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: ProviderConfig, model: str | None = None) -> GenericOpenAIProvider:
        return cls(
            base_url=config.base_url,
            model=model or config.model,
            temperature=config.temperature,
            api_key=os.environ.get(config.api_key_env, "not-needed"),
            max_tokens=config.max_tokens,
            image_model=config.image_model,
            search_model=config.search_model,
            timeout=config.timeout,
        )

    # -- BaseProvider hooks --

    def _provider_name(self) -> str:
        return "generic_openai"

    def _get_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _build_payload(self, system: str, user: str, max_tokens: int) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }

    def _extract_text(self, data: dict) -> str:
        choices = data.get("choices", [])
        if choices:
            return choices[0].get("message", {}).get("content", "") or ""
        return ""

    # -- streaming chat --

    def _build_stream_payload(
        self,
        directive: str,
        prior_turns: list[Message],
        user_parts: list[dict],
        settings: ChatSettings,
    ) -> dict:
        messages = [{"role": "system", "content": directive}]
        messages.extend(message_to_openai(m) for m in prior_turns)
        messages.append({"role": "user", "content": parts_to_openai(user_parts)})
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if settings.search_enabled and self.search_model:
            payload["model"] = self.search_model
            payload["web_search_options"] = {}
        else:
            payload["temperature"] = self.temperature
        return payload

    def generate(
        self,
        directive: str,
        prior_turns: list[Message],
        user_parts: list[dict],
        settings: ChatSettings,
    ) -> Iterator[StreamChunk]:
        """Stream a reply as ``StreamChunk`` deltas parsed from SSE lines."""
        payload = self._build_stream_payload(directive, prior_turns, user_parts, settings)
        try:
            with httpx.Client(timeout=self._timeout) as client:
                with client.stream(
                    "POST", self._get_url(), headers=self._get_headers(), json=payload,
                ) as response:
                    if response.status_code != 200:
                        response.read()
                        raise ProviderError(
                            f"HTTP {response.status_code}: {response.text}",
                            provider=self._provider_name(),
                            status_code=response.status_code,
                        )
                    for line in response.iter_lines():
                        if not line.startswith("data:"):
                            continue
                        raw = line[len("data:"):].strip()
                        if raw == "[DONE]":
                            break
                        try:
                            data = json.loads(raw)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed SSE line: %.80s", raw)
                            continue
                        text = ""
                        choices = data.get("choices", [])
                        if choices:
                            text = (choices[0].get("delta", {}) or {}).get("content", "") or ""
                        sources = extract_sources(data)
                        if text or sources:
                            yield StreamChunk(text=text, sources=sources)
        except httpx.HTTPError as e:
            raise ProviderError(f"HTTP error: {e}", provider=self._provider_name()) from e

    # -- images --

    def generate_images(self, prompt: str, aspect_ratio: str = "1:1", count: int = 1) -> list[str]:
        """Return generated images as URLs or ``data:`` URIs."""
        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "n": count,
            "size": ASPECT_RATIO_SIZES.get(aspect_ratio, "1024x1024"),
        }
        data = self.post_json(f"{self.base_url}/images/generations", payload)
        images: list[str] = []
        for item in data.get("data", []):
            if item.get("b64_json"):
                images.append(f"data:image/png;base64,{item['b64_json']}")
            elif item.get("url"):
                images.append(item["url"])
        if not images:
            raise ProviderError("Image response contained no images", provider=self._provider_name())
        return images
