"""Shared fixtures for nova-chat tests."""

from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path

import pytest

from nova_chat.config import load_config
from nova_chat.engine import ConversationEngine
from nova_chat.storage.memory import MemoryStore
from nova_chat.types import (
    Message,
    Narrative,
    NovaChatConfig,
    Role,
    Session,
    Source,
    StreamChunk,
)


class FixedClock:
    """Injectable clock; tests move ``today`` forward to cross midnight."""

    def __init__(self, today: date | None = None):
        self.today = today or date(2026, 3, 14)

    def __call__(self) -> date:
        return self.today


class FakeModelStream:
    """Model stream that yields canned replies word by word (no API calls)."""

    def __init__(self, responses: list[str] | None = None, sources: list[Source] | None = None):
        self._responses = responses or ["Hello! I'm a test assistant."]
        self._sources = sources or []
        self._call_count = 0
        self.calls: list[dict] = []

    def generate(self, directive, prior_turns, user_parts, settings):
        self.calls.append({
            "directive": directive,
            "prior_turns": list(prior_turns),
            "user_parts": list(user_parts),
            "settings": settings,
        })
        idx = min(self._call_count, len(self._responses) - 1)
        response = self._responses[idx]
        self._call_count += 1
        words = response.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(text=word + (" " if i < len(words) - 1 else ""))
        if self._sources:
            yield StreamChunk(sources=list(self._sources))


class FailingModelStream:
    """Yields some text, then raises mid-stream."""

    def __init__(self, partial: str = "Partial ", error: Exception | None = None):
        self.partial = partial
        self.error = error or RuntimeError("upstream exploded")
        self.calls = 0

    def generate(self, directive, prior_turns, user_parts, settings):
        self.calls += 1
        yield StreamChunk(text=self.partial)
        raise self.error


class FakeProfileExtractor:
    def __init__(self, result: dict | None = None, error: Exception | None = None):
        self.result = result if result is not None else {}
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def extract(self, prompt: str, reply: str) -> dict:
        self.calls.append((prompt, reply))
        if self.error is not None:
            raise self.error
        return dict(self.result)


class FakeImageGenerator:
    def __init__(self, urls: list[str] | None = None, error: Exception | None = None):
        self.urls = urls or ["data:image/png;base64,AAAA"]
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    def generate_images(self, prompt: str, aspect_ratio: str, count: int) -> list[str]:
        self.calls.append((prompt, aspect_ratio, count))
        if self.error is not None:
            raise self.error
        return list(self.urls)


class MockLLMProvider:
    """Mock completion provider recording its calls."""

    def __init__(self, response: str = "{}"):
        self.calls: list[dict] = []
        self.response = response

    def complete(self, system: str, user: str, max_tokens: int) -> str:
        self.calls.append({"system": system, "user": user, "max_tokens": max_tokens})
        return self.response


def make_session(sid: str, exchanges: list[tuple[str, str | None]]) -> Session:
    """Build a session from (user_text, model_text) pairs."""
    messages = []
    for user_text, model_text in exchanges:
        messages.append(Message(role=Role.USER, content=Narrative(user_text)))
        if model_text is not None:
            messages.append(Message(role=Role.MODEL, content=Narrative(model_text)))
    return Session(id=sid, title=sid, messages=messages)


@pytest.fixture
def config() -> NovaChatConfig:
    return load_config(config_dict={"storage": {"backend": "memory"}})


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def kv_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def model() -> FakeModelStream:
    return FakeModelStream()


@pytest.fixture
def extractor() -> FakeProfileExtractor:
    return FakeProfileExtractor()


@pytest.fixture
def image_generator() -> FakeImageGenerator:
    return FakeImageGenerator()


@pytest.fixture
def engine(config, kv_store, model, extractor, image_generator, clock):
    eng = ConversationEngine(
        config=config,
        store=kv_store,
        model=model,
        extractor=extractor,
        image_generator=image_generator,
        clock=clock,
    )
    yield eng
    eng.close()


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db(tmp_store_dir):
    return tmp_store_dir / "test_store.db"
