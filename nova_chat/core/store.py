"""KeyValueStore abstract base class: the persistence surface used by the core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """Pluggable storage backend for JSON-serializable application state.

    Keys used by the core: ``sessions``, ``active_session_id``, ``personas``,
    ``profile``, ``general_memories``, ``pinned_memories``, ``economy``,
    ``default_settings``.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default if missing."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key (upsert)."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""

    def keys(self) -> list[str]:
        """List stored keys. Backends that cannot enumerate return []."""
        return []
