"""SessionStore: persistent sessions plus at most one ephemeral session.

Every mutation goes through :meth:`SessionStore.apply`, which runs a pure
``Session -> Session`` reducer under the target session's lock, swaps the
result in, and flushes persistent sessions to the key-value store.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable

from .store import KeyValueStore
from ..storage.helpers import session_from_dict, session_to_dict
from ..types import (
    EPHEMERAL,
    Artifact,
    ChatSettings,
    KnowledgeFile,
    Message,
    MessageState,
    Narrative,
    Persona,
    Role,
    Session,
    SessionBusyError,
    SessionConfig,
    SessionNotFoundError,
    Source,
    new_id,
)

logger = logging.getLogger(__name__)

SESSIONS_KEY = "sessions"
ACTIVE_KEY = "active_session_id"

Reducer = Callable[[Session], Session]


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------

def derive_title(text: str, max_chars: int) -> str:
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def with_user_message(
    message: Message,
    persona_name: str | None = None,
    title_max_chars: int = 30,
) -> Reducer:
    def reduce(session: Session) -> Session:
        updated = dataclasses.replace(session, messages=[*session.messages, message])
        if not session.titled and not session.ephemeral:
            title = persona_name or derive_title(message.text or "", title_max_chars)
            if title:
                updated = dataclasses.replace(updated, title=title, titled=True)
        return updated
    return reduce


def with_message(message: Message) -> Reducer:
    def reduce(session: Session) -> Session:
        return dataclasses.replace(session, messages=[*session.messages, message])
    return reduce


def with_replaced_message(
    message_id: str,
    content: Narrative | Artifact,
    sources: list[Source],
    state: MessageState,
) -> Reducer:
    def reduce(session: Session) -> Session:
        messages = []
        found = False
        for m in session.messages:
            if m.id == message_id:
                m = dataclasses.replace(m, content=content, sources=list(sources), state=state)
                found = True
            messages.append(m)
        if not found:
            raise KeyError(f"Message {message_id!r} not in session {session.id!r}")
        return dataclasses.replace(session, messages=messages)
    return reduce


def with_settings(settings: ChatSettings) -> Reducer:
    def reduce(session: Session) -> Session:
        return dataclasses.replace(session, settings=dataclasses.replace(settings))
    return reduce


def with_knowledge(file: KnowledgeFile) -> Reducer:
    """Add *file*, replacing an existing entry with the same name in place."""
    def reduce(session: Session) -> Session:
        knowledge = list(session.knowledge)
        for i, existing in enumerate(knowledge):
            if existing.name == file.name:
                knowledge[i] = file
                break
        else:
            knowledge.append(file)
        return dataclasses.replace(session, knowledge=knowledge)
    return reduce


def without_knowledge(name: str) -> Reducer:
    def reduce(session: Session) -> Session:
        return dataclasses.replace(
            session, knowledge=[f for f in session.knowledge if f.name != name],
        )
    return reduce


def with_title(title: str) -> Reducer:
    def reduce(session: Session) -> Session:
        return dataclasses.replace(session, title=title, titled=True)
    return reduce


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SessionStore:
    """Owns sessions, the active selection, and the per-session busy flags."""

    def __init__(self, store: KeyValueStore, config: SessionConfig | None = None) -> None:
        self.store = store
        self.config = config or SessionConfig()
        self._sessions: dict[str, Session] = {}
        self._ephemeral: Session | None = None
        self._active: str | None = None
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self._flush_lock = threading.Lock()
        self._busy: set[str] = set()
        self._load()

    def _load(self) -> None:
        raw = self.store.get(SESSIONS_KEY, {}) or {}
        for sid, data in raw.items():
            try:
                self._sessions[sid] = session_from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable session %s: %s", sid, e)
        active = self.store.get(ACTIVE_KEY)
        if active in self._sessions:
            self._active = active
        elif self._sessions:
            self._active = max(self._sessions)
        logger.debug("Loaded %d sessions (active=%s)", len(self._sessions), self._active)

    def _lock_for(self, target: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(target)
            if lock is None:
                lock = self._locks[target] = threading.Lock()
            return lock

    def _flush(self) -> None:
        with self._guard:
            snapshot = {sid: session_to_dict(s) for sid, s in self._sessions.items()}
        with self._flush_lock:
            self.store.set(SESSIONS_KEY, snapshot)

    def _set_active(self, target: str | None) -> None:
        with self._guard:
            self._active = target
        if target is None or target == EPHEMERAL:
            self.store.delete(ACTIVE_KEY)
        else:
            self.store.set(ACTIVE_KEY, target)

    # -- core mutation path ----------------------------------------------

    def apply(self, target: str, reducer: Reducer, flush: bool = True) -> Session:
        """Run *reducer* on the target session and swap the result in."""
        with self._lock_for(target):
            session = self.require(target)
            updated = reducer(session)
            with self._guard:
                if updated.ephemeral:
                    self._ephemeral = updated
                else:
                    self._sessions[updated.id] = updated
            if flush and not updated.ephemeral:
                self._flush()
            return updated

    # -- lookup ------------------------------------------------------------

    @property
    def active_target(self) -> str | None:
        return self._active

    def get(self, target: str) -> Session | None:
        with self._guard:
            if target == EPHEMERAL:
                return self._ephemeral
            return self._sessions.get(target)

    def require(self, target: str) -> Session:
        session = self.get(target)
        if session is None:
            raise SessionNotFoundError(target)
        return session

    def active_session(self) -> Session | None:
        target = self._active
        return self.get(target) if target is not None else None

    def all_persistent(self) -> list[Session]:
        with self._guard:
            return list(self._sessions.values())

    def list_sessions(self) -> list[Session]:
        """Persistent sessions, newest first."""
        return sorted(self.all_persistent(), key=lambda s: s.id, reverse=True)

    # -- lifecycle ---------------------------------------------------------

    def create(self, settings: ChatSettings, persona: Persona | None = None) -> Session:
        session = Session(
            id=new_id(),
            title=self.config.new_chat_title,
            settings=dataclasses.replace(settings),
        )
        if persona is not None:
            session.persona_id = persona.id
            if persona.greeting:
                session.messages.append(Message(role=Role.MODEL, content=Narrative(persona.greeting)))
        self.discard_ephemeral()
        with self._guard:
            self._sessions[session.id] = session
        self._set_active(session.id)
        self._flush()
        logger.info("Created session %s", session.id)
        return session

    def create_ephemeral(self, settings: ChatSettings, persona: Persona | None = None) -> Session:
        session = Session(
            id=EPHEMERAL,
            title=self.config.ephemeral_title,
            settings=dataclasses.replace(settings),
            ephemeral=True,
        )
        if persona is not None:
            session.persona_id = persona.id
            if persona.greeting:
                session.messages.append(Message(role=Role.MODEL, content=Narrative(persona.greeting)))
        with self._guard:
            self._check_idle(EPHEMERAL)
            self._ephemeral = session
        self._set_active(EPHEMERAL)
        return session

    def select(self, session_id: str) -> Session:
        session = self.require(session_id)
        if session_id != EPHEMERAL:
            self.discard_ephemeral()
        self._set_active(session_id)
        return session

    def delete(self, session_id: str) -> str | None:
        """Delete a session; returns the new active target.

        Raises SessionBusyError while a turn is streaming into it.
        """
        if session_id == EPHEMERAL:
            self.require(EPHEMERAL)
            self.discard_ephemeral()
            return self._active
        with self._lock_for(session_id):
            with self._guard:
                if session_id not in self._sessions:
                    raise SessionNotFoundError(session_id)
                self._check_idle(session_id)
                del self._sessions[session_id]
                remaining = sorted(self._sessions)
            self._flush()
        with self._guard:
            self._locks.pop(session_id, None)
        if self._active == session_id:
            self._set_active(remaining[-1] if remaining else None)
        logger.info("Deleted session %s (active=%s)", session_id, self._active)
        return self._active

    def discard_ephemeral(self) -> None:
        with self._guard:
            if self._ephemeral is not None:
                self._check_idle(EPHEMERAL)
            self._ephemeral = None
            was_active = self._active == EPHEMERAL
        if was_active:
            self._set_active(None)

    # -- messages, settings, knowledge ------------------------------------

    def append_user_message(
        self, target: str, message: Message, persona_name: str | None = None,
    ) -> Session:
        return self.apply(
            target,
            with_user_message(message, persona_name, self.config.title_max_chars),
        )

    def append_model_message(self, target: str, message: Message) -> Session:
        return self.apply(
            target, with_message(message),
            flush=message.state == MessageState.FINALIZED,
        )

    def replace_message(
        self,
        target: str,
        message_id: str,
        content: Narrative | Artifact,
        sources: list[Source] | None = None,
        state: MessageState = MessageState.FINALIZED,
    ) -> Session:
        return self.apply(
            target,
            with_replaced_message(message_id, content, sources or [], state),
            flush=state == MessageState.FINALIZED,
        )

    def update_settings(self, target: str, settings: ChatSettings) -> Session:
        return self.apply(target, with_settings(settings))

    def add_knowledge(self, target: str, file: KnowledgeFile) -> Session:
        return self.apply(target, with_knowledge(file))

    def remove_knowledge(self, target: str, name: str) -> Session:
        return self.apply(target, without_knowledge(name))

    def rename(self, target: str, title: str) -> Session:
        return self.apply(target, with_title(title))

    # -- busy guard --------------------------------------------------------

    def open_stream(self, target: str) -> None:
        with self._guard:
            if target in self._busy:
                raise SessionBusyError(f"Session {target!r} already has an open stream")
            self._busy.add(target)

    def close_stream(self, target: str) -> None:
        with self._guard:
            self._busy.discard(target)

    def _check_idle(self, target: str) -> None:
        # Caller holds _guard.
        if target in self._busy:
            raise SessionBusyError(f"Session {target!r} has an open stream")

    def is_busy(self, target: str) -> bool:
        with self._guard:
            return target in self._busy
