"""nova-chat: conversation orchestration for a personal AI assistant."""

from .config import load_config
from .engine import ConversationEngine
from .types import (
    Artifact,
    ChatSettings,
    EconomyState,
    Message,
    Narrative,
    NovaChatConfig,
    Session,
    TurnResult,
    TurnStatus,
)

__version__ = "0.1.0"

__all__ = [
    "load_config",
    "Artifact",
    "ChatSettings",
    "ConversationEngine",
    "EconomyState",
    "Message",
    "Narrative",
    "NovaChatConfig",
    "Session",
    "TurnResult",
    "TurnStatus",
]
