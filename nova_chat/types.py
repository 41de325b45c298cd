"""All dataclasses, Protocols, and type aliases for nova-chat."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

EPHEMERAL = "temp-chat"  # reserved target for the singleton ephemeral session

_id_lock = threading.Lock()
_last_id = 0


def new_id() -> str:
    """Return a monotonic, zero-padded millisecond token.

    Lexicographic order of the returned strings equals creation order, which
    the retriever and the session store rely on as a recency proxy.
    """
    global _last_id
    with _id_lock:
        candidate = int(time.time() * 1000)
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
    return f"{candidate:015d}"


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------

class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class MessageState(str, Enum):
    """Two-phase lifecycle of a message."""
    PROVISIONAL = "provisional"  # still being extended by an open stream
    FINALIZED = "finalized"


ARTIFACT_KINDS: frozenset[str] = frozenset({
    "table",
    "chart",
    "report",
    "news_report",
    "article_review",
    "resume",
    "code_project",
    "study_explanation",
    "study_review",
    "study_quiz",
    "youtube_search_results",
})

IMAGE_KIND = "image"  # produced by the /image command, never by the classifier
RESUME_DEFAULT_TEMPLATE = "elegant"


@dataclass
class Narrative:
    """Free-form text with embedded rich spans (diagrams, formulas, tables)."""
    text: str


@dataclass
class Artifact:
    """A structured response of one of the known kinds."""
    kind: str
    fields: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {"kind": self.kind, **self.fields}


Content = Narrative | Artifact


@dataclass
class Source:
    uri: str
    title: str = ""


@dataclass
class Attachment:
    """Lightweight reference to a user-supplied file or image."""
    name: str
    mime_type: str = ""
    ref: str = ""


@dataclass
class Message:
    role: Role
    content: Content
    id: str = field(default_factory=new_id)
    sources: list[Source] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    state: MessageState = MessageState.FINALIZED

    @property
    def text(self) -> str | None:
        """Narrative text, or None for artifacts."""
        if isinstance(self.content, Narrative):
            return self.content.text
        return None


# ---------------------------------------------------------------------------
# Sessions & personalization
# ---------------------------------------------------------------------------

@dataclass
class ChatSettings:
    search_enabled: bool = False
    deep_thinking: bool = False
    scientific_mode: bool = False


@dataclass
class KnowledgeFile:
    """An already-decoded document attached as knowledge."""
    name: str
    text: str


@dataclass
class Session:
    id: str
    title: str = ""
    messages: list[Message] = field(default_factory=list)
    settings: ChatSettings = field(default_factory=ChatSettings)
    persona_id: str | None = None
    knowledge: list[KnowledgeFile] = field(default_factory=list)
    ephemeral: bool = False
    titled: bool = False  # title derived from the first real exchange


@dataclass
class Persona:
    id: str
    name: str
    icon: str = ""
    directive_override: str = ""
    knowledge: list[KnowledgeFile] = field(default_factory=list)
    greeting: str = ""


@dataclass
class UserProfile:
    name: str = ""
    profession: str = ""
    interests: list[str] = field(default_factory=list)
    facts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "profession": self.profession,
            "interests": list(self.interests),
            "facts": list(self.facts),
        }


@dataclass
class EconomyState:
    balance: int
    last_reset_day: str  # ISO date, e.g. "2026-10-19"


# ---------------------------------------------------------------------------
# Retrieval & streaming
# ---------------------------------------------------------------------------

@dataclass
class ContextSnippet:
    """A past user message and (optionally) the model reply that followed."""
    user_text: str
    model_text: str | None = None
    session_id: str = ""


@dataclass
class StreamChunk:
    text: str = ""
    sources: list[Source] = field(default_factory=list)


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INSUFFICIENT_BALANCE = "insufficient_balance"


@dataclass
class TurnResult:
    status: TurnStatus
    session: Session | None
    economy: EconomyState
    cost: int = 0
    notice: str = ""


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class NovaChatError(Exception):
    """Base class for nova-chat errors."""


class ProviderError(NovaChatError):
    def __init__(self, message: str, provider: str, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class SessionNotFoundError(NovaChatError, KeyError):
    pass


class SessionBusyError(NovaChatError):
    pass


class ModelStreamError(NovaChatError):
    """The model stream raised while it was being consumed."""


class PersonaNotFoundError(NovaChatError, KeyError):
    pass


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@runtime_checkable
class ModelStream(Protocol):
    def generate(
        self,
        directive: str,
        prior_turns: list[Message],
        user_parts: list[dict],
        settings: ChatSettings,
    ) -> Iterator[StreamChunk]: ...


@runtime_checkable
class ProfileExtractor(Protocol):
    def extract(self, prompt: str, reply: str) -> dict: ...


@runtime_checkable
class ImageGenerator(Protocol):
    def generate_images(self, prompt: str, aspect_ratio: str, count: int) -> list[str]: ...


@runtime_checkable
class LLMProvider(Protocol):
    def complete(self, system: str, user: str, max_tokens: int) -> str: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_COMMAND_COSTS: dict[str, int] = {
    "/image ": 20,
    "/youtube ": 25,
    "/resume": 100,
    "/report": 75,
    "/project": 150,
    "/chart": 30,
    "/table": 30,
}


@dataclass
class EconomyConfig:
    daily_allotment: int = 300
    command_costs: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_COMMAND_COSTS))
    deep_thinking_cost: int = 5
    scientific_mode_cost: int = 10


@dataclass
class RetrieverConfig:
    max_snippets: int = 3
    min_shared_words: int = 2  # "more than one" shared word
    min_word_length: int = 4   # words must be longer than 3 characters


@dataclass
class SessionConfig:
    title_max_chars: int = 30
    new_chat_title: str = "New chat"
    ephemeral_title: str = "Temporary chat"


@dataclass
class StorageConfig:
    backend: str = "sqlite"
    root: str = ".nova-chat/store"
    sqlite_path: str = ".nova-chat/store.db"


@dataclass
class ProviderConfig:
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float = 0.7
    max_tokens: int = 4096
    image_model: str = "gpt-image-1"
    extraction_model: str = ""  # falls back to model
    search_model: str = ""  # used with web search when set
    timeout: float = 120.0


@dataclass
class NovaChatConfig:
    version: str = "0.1"
    locale: str = "en"
    economy: EconomyConfig = field(default_factory=EconomyConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    defaults: ChatSettings = field(default_factory=ChatSettings)
