"""AppState: profile, memories, personas and defaults, loaded from and flushed to the store."""

from __future__ import annotations

import dataclasses
import logging
import threading

from ..config import SUPPORTED_LOCALES
from .profile import merge_profile
from .store import KeyValueStore
from ..storage.helpers import (
    message_from_dict,
    message_to_dict,
    persona_from_dict,
    persona_to_dict,
    profile_from_dict,
    settings_from_dict,
    settings_to_dict,
)
from ..types import (
    ChatSettings,
    Message,
    MessageState,
    Persona,
    PersonaNotFoundError,
    UserProfile,
    new_id,
)

logger = logging.getLogger(__name__)

PERSONAS_KEY = "personas"
PROFILE_KEY = "profile"
GENERAL_MEMORIES_KEY = "general_memories"
PINNED_MEMORIES_KEY = "pinned_memories"
DEFAULT_SETTINGS_KEY = "default_settings"
LOCALE_KEY = "locale"

STUDY_BUDDY_ID = "default-study-buddy"

_STUDY_BUDDY_DIRECTIVES = {
    "en": (
        "You are Study Buddy, a patient tutor. Your primary language is English. "
        "When the user names a topic, teach it step by step with a study_explanation "
        "object, then offer a review or a quiz."
    ),
    "ar": (
        "أنت رفيق الدراسة، معلم صبور. لغتك الأساسية هي العربية. "
        "عندما يذكر المستخدم موضوعًا، اشرحه خطوة بخطوة ثم اعرض مراجعة أو اختبارًا."
    ),
}


def default_personas(locale: str) -> list[Persona]:
    return [
        Persona(
            id=STUDY_BUDDY_ID,
            name="Study Buddy" if locale != "ar" else "رفيق الدراسة",
            icon="🎓",
            directive_override=_STUDY_BUDDY_DIRECTIVES.get(locale, _STUDY_BUDDY_DIRECTIVES["en"]),
        ),
    ]


class AppState:
    """Process-wide personalization state.

    Each mutator updates memory and flushes its key immediately.
    """

    def __init__(
        self,
        store: KeyValueStore,
        locale: str = "en",
        defaults: ChatSettings | None = None,
    ) -> None:
        self.store = store
        self.locale = locale
        self.profile = UserProfile()
        self.general_memories: list[str] = []
        self.pinned_memories: list[Message] = []
        self.personas: list[Persona] = []
        self.default_settings = dataclasses.replace(defaults) if defaults else ChatSettings()
        self._lock = threading.Lock()

    @classmethod
    def load(
        cls,
        store: KeyValueStore,
        locale: str = "en",
        defaults: ChatSettings | None = None,
    ) -> AppState:
        stored_locale = store.get(LOCALE_KEY, locale)
        if stored_locale not in SUPPORTED_LOCALES:
            logger.warning("Stored locale %r is not supported, using %r", stored_locale, locale)
            stored_locale = locale
        state = cls(store, locale=stored_locale, defaults=defaults)
        state.profile = profile_from_dict(store.get(PROFILE_KEY))
        state.general_memories = [str(m) for m in store.get(GENERAL_MEMORIES_KEY, []) or []]
        state.pinned_memories = [
            message_from_dict(m) for m in store.get(PINNED_MEMORIES_KEY, []) or []
        ]
        raw_defaults = store.get(DEFAULT_SETTINGS_KEY)
        if raw_defaults is not None:
            state.default_settings = settings_from_dict(raw_defaults)

        raw_personas = store.get(PERSONAS_KEY)
        if raw_personas is None:
            state.personas = default_personas(state.locale)
            state.flush_personas()
            logger.info("Seeded default personas")
        else:
            state.personas = [persona_from_dict(p) for p in raw_personas]
        return state

    # -- flushing ----------------------------------------------------------

    def flush_profile(self) -> None:
        self.store.set(PROFILE_KEY, self.profile.to_dict())

    def flush_memories(self) -> None:
        self.store.set(GENERAL_MEMORIES_KEY, list(self.general_memories))
        self.store.set(PINNED_MEMORIES_KEY, [message_to_dict(m) for m in self.pinned_memories])

    def flush_personas(self) -> None:
        self.store.set(PERSONAS_KEY, [persona_to_dict(p) for p in self.personas])

    # -- profile -----------------------------------------------------------

    def merge_profile(self, partial: dict) -> UserProfile:
        with self._lock:
            self.profile = merge_profile(self.profile, partial)
            self.flush_profile()
            return self.profile

    # -- memories ----------------------------------------------------------

    def add_general_memory(self, text: str) -> list[str]:
        text = text.strip()
        with self._lock:
            if text and text not in self.general_memories:
                self.general_memories.append(text)
                self.flush_memories()
            return list(self.general_memories)

    def remove_general_memory(self, text: str) -> list[str]:
        with self._lock:
            if text in self.general_memories:
                self.general_memories.remove(text)
                self.flush_memories()
            return list(self.general_memories)

    def pin_message(self, message: Message) -> list[Message]:
        if message.state != MessageState.FINALIZED:
            raise ValueError("Only finalized messages can be pinned")
        with self._lock:
            if all(m.id != message.id for m in self.pinned_memories):
                self.pinned_memories.append(message)
                self.flush_memories()
            return list(self.pinned_memories)

    def unpin_message(self, message_id: str) -> list[Message]:
        with self._lock:
            kept = [m for m in self.pinned_memories if m.id != message_id]
            if len(kept) != len(self.pinned_memories):
                self.pinned_memories = kept
                self.flush_memories()
            return list(self.pinned_memories)

    # -- personas ----------------------------------------------------------

    def get_persona(self, persona_id: str) -> Persona | None:
        for persona in self.personas:
            if persona.id == persona_id:
                return persona
        return None

    def require_persona(self, persona_id: str) -> Persona:
        persona = self.get_persona(persona_id)
        if persona is None:
            raise PersonaNotFoundError(persona_id)
        return persona

    def add_persona(
        self,
        name: str,
        directive_override: str,
        icon: str = "",
        greeting: str = "",
        knowledge=None,
    ) -> Persona:
        persona = Persona(
            id=new_id(),
            name=name,
            icon=icon,
            directive_override=directive_override,
            knowledge=list(knowledge or []),
            greeting=greeting,
        )
        with self._lock:
            self.personas.append(persona)
            self.flush_personas()
        return persona

    def update_persona(self, persona_id: str, **changes) -> Persona:
        """Replace fields of a persona. Past sessions keep their directives."""
        with self._lock:
            for i, persona in enumerate(self.personas):
                if persona.id == persona_id:
                    updated = dataclasses.replace(persona, **changes)
                    self.personas[i] = updated
                    self.flush_personas()
                    return updated
        raise PersonaNotFoundError(persona_id)

    def delete_persona(self, persona_id: str) -> None:
        with self._lock:
            kept = [p for p in self.personas if p.id != persona_id]
            if len(kept) == len(self.personas):
                raise PersonaNotFoundError(persona_id)
            self.personas = kept
            self.flush_personas()

    # -- defaults & locale -------------------------------------------------

    def set_default_settings(self, settings: ChatSettings) -> ChatSettings:
        with self._lock:
            self.default_settings = dataclasses.replace(settings)
            self.store.set(DEFAULT_SETTINGS_KEY, settings_to_dict(settings))
            return dataclasses.replace(self.default_settings)

    def set_locale(self, locale: str) -> None:
        if locale not in SUPPORTED_LOCALES:
            raise ValueError(f"Unsupported locale: {locale!r}")
        with self._lock:
            self.locale = locale
            self.store.set(LOCALE_KEY, locale)
