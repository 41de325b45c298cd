"""ConversationEngine: main orchestrator wiring all components together."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import date
from pathlib import Path

from .config import load_config, validate_config
from .core.assembler import ContextAssembler
from .core.classifier import StreamAccumulator, classify_stream, guarded_stream
from .core.economy import EconomyGate
from .core.profile import ProfileExtractionTask
from .core.retriever import RelevanceRetriever
from .core.session_store import SessionStore
from .core.state import AppState
from .core.store import KeyValueStore
from .storage.filesystem import FilesystemStore
from .storage.memory import MemoryStore
from .storage.sqlite import SQLiteStore
from .types import (
    IMAGE_KIND,
    Artifact,
    Attachment,
    ChatSettings,
    EconomyState,
    ImageGenerator,
    KnowledgeFile,
    Message,
    MessageState,
    ModelStream,
    ModelStreamError,
    Narrative,
    NovaChatConfig,
    Persona,
    ProfileExtractor,
    Role,
    Session,
    SessionNotFoundError,
    TurnResult,
    TurnStatus,
    UserProfile,
)

logger = logging.getLogger(__name__)

_IMAGE_COMMAND_RE = re.compile(r"^/image\s+", re.IGNORECASE)

INSUFFICIENT_BALANCE_NOTICE = (
    "You don't have enough points for this request. Points reset daily."
)

STUDY_FOLLOW_UP_PROMPTS = {
    "review": "Create a study review of the topic: {topic}",
    "quiz": "Create a study quiz about the topic: {topic}",
}


class ConversationEngine:
    """Main orchestrator for chat turns and session management.

    Usage:
        engine = ConversationEngine(config_path="./nova-chat.yaml")
        result = engine.submit_message("Explain photosynthesis")
        print(result.session.messages[-1].text)

    When ``model`` is omitted, an OpenAI-compatible provider built from the
    ``provider`` config section serves as model stream, profile extractor
    and image generator. When ``model`` is given, the other collaborators
    are only used if passed explicitly.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        config: NovaChatConfig | None = None,
        store: KeyValueStore | None = None,
        model: ModelStream | None = None,
        extractor: ProfileExtractor | None = None,
        image_generator: ImageGenerator | None = None,
        prompt_enhancer=None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.config = config or load_config(config_path)
        errors = validate_config(self.config)
        if errors:
            raise ValueError("Invalid config: " + "; ".join(errors))
        self._store = store if store is not None else self._build_store()
        if model is None:
            model, extractor, image_generator, prompt_enhancer = self._build_providers()
        self._model = model
        self._image_generator = image_generator
        self._prompt_enhancer = prompt_enhancer

        self.state = AppState.load(
            self._store, locale=self.config.locale, defaults=self.config.defaults,
        )
        self.sessions = SessionStore(self._store, self.config.session)
        self.economy = EconomyGate(self._store, self.config.economy, clock=clock)
        self._retriever = RelevanceRetriever(self.config.retriever)
        self._assembler = ContextAssembler()
        self._extraction = ProfileExtractionTask(extractor, self.state.merge_profile)

    def _build_store(self) -> KeyValueStore:
        """Initialize the storage backend."""
        backend = self.config.storage.backend
        if backend == "sqlite":
            return SQLiteStore(db_path=self.config.storage.sqlite_path)
        if backend == "filesystem":
            return FilesystemStore(root=self.config.storage.root)
        return MemoryStore()

    def _build_providers(self):
        from .providers import GenericOpenAIProvider, ImagePromptEnhancer, LLMProfileExtractor

        provider = GenericOpenAIProvider.from_config(self.config.provider)
        extraction_llm = provider
        if self.config.provider.extraction_model:
            extraction_llm = GenericOpenAIProvider.from_config(
                self.config.provider, model=self.config.provider.extraction_model,
            )
        return (
            provider,
            LLMProfileExtractor(extraction_llm),
            provider,
            ImagePromptEnhancer(provider),
        )

    def _resolve(self, target: str | None) -> str:
        target = target or self.sessions.active_target
        if target is None:
            raise SessionNotFoundError("No active session")
        return target

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def submit_message(
        self,
        prompt: str,
        target: str | None = None,
        attachments: list[Attachment] | None = None,
        image_parts: list[dict] | None = None,
    ) -> TurnResult:
        """Run one user turn: gate, assemble, stream, classify, finalize.

        Without a target or active session, a persistent session is created
        once the turn is affordable. Raises SessionBusyError if the session
        already has an open stream.
        """
        if target is None and self.sessions.active_target is None:
            cost = self.economy.cost(prompt, self.state.default_settings)
            if cost > self.economy.balance:
                logger.info("Turn refused before session creation: cost %d exceeds balance", cost)
                return self._refused(None, cost)
            self.create_session()
        target = self._resolve(target)
        session = self.sessions.require(target)

        self.sessions.open_stream(target)
        try:
            persona = self.state.get_persona(session.persona_id) if session.persona_id else None
            user_message = Message(
                role=Role.USER, content=Narrative(prompt), attachments=list(attachments or []),
            )
            is_image = bool(_IMAGE_COMMAND_RE.match(prompt.strip()))

            directive = ""
            if not is_image:
                snippets = self._retriever.find(prompt, self.sessions.all_persistent())
                directive = self._assembler.build(
                    settings=session.settings,
                    profile=self.state.profile,
                    general_memories=self.state.general_memories,
                    persona=persona,
                    session_knowledge=session.knowledge,
                    pinned_memories=self.state.pinned_memories,
                    retrieved_context=self._retriever.format_block(snippets),
                    locale=self.state.locale,
                )

            cost = self.economy.cost(prompt, session.settings)
            if not self.economy.try_deduct(cost):
                logger.info("Turn refused: cost %d exceeds balance", cost)
                return self._refused(session, cost)

            if is_image:
                return self._run_image_turn(target, prompt, user_message, persona, cost)

            prior_turns = [m for m in session.messages if m.state == MessageState.FINALIZED]
            user_parts = [{"text": prompt}, *(image_parts or [])]

            reply = self._open_reply(target, user_message, persona)

            def publish(partial, sources):
                self.sessions.replace_message(
                    target, reply.id, partial, sources, MessageState.PROVISIONAL,
                )

            status = TurnStatus.COMPLETED
            try:
                content, sources = classify_stream(
                    guarded_stream(
                        lambda: self._model.generate(
                            directive, prior_turns, user_parts, session.settings,
                        )
                    ),
                    publish,
                )
            except ModelStreamError as e:
                logger.error("Model stream failed for session %s: %s", target, e)
                content, sources = StreamAccumulator().fail()
                status = TurnStatus.FAILED

            final = self.sessions.replace_message(
                target, reply.id, content, sources, MessageState.FINALIZED,
            )
            if status == TurnStatus.COMPLETED and isinstance(content, Narrative) and persona is None:
                self._extraction.submit(prompt, content.text)

            logger.info(
                "Turn %s in session %s (cost=%d, kind=%s)",
                status.value, target, cost,
                content.kind if isinstance(content, Artifact) else "narrative",
            )
            return TurnResult(
                status=status, session=final, economy=self.economy.snapshot(), cost=cost,
            )
        finally:
            self.sessions.close_stream(target)

    def _refused(self, session: Session | None, cost: int) -> TurnResult:
        return TurnResult(
            status=TurnStatus.INSUFFICIENT_BALANCE,
            session=session,
            economy=self.economy.snapshot(),
            cost=cost,
            notice=INSUFFICIENT_BALANCE_NOTICE,
        )

    def _open_reply(self, target: str, user_message: Message, persona: Persona | None) -> Message:
        """Append the user message and a provisional, empty model reply."""
        self.sessions.append_user_message(
            target, user_message, persona.name if persona else None,
        )
        reply = Message(role=Role.MODEL, content=Narrative(""), state=MessageState.PROVISIONAL)
        self.sessions.append_model_message(target, reply)
        return reply

    def _run_image_turn(
        self,
        target: str,
        prompt: str,
        user_message: Message,
        persona: Persona | None,
        cost: int,
    ) -> TurnResult:
        image_prompt = _IMAGE_COMMAND_RE.sub("", prompt.strip()).strip()
        reply = self._open_reply(target, user_message, persona)

        status = TurnStatus.COMPLETED
        try:
            if self._image_generator is None:
                raise RuntimeError("No image generator configured")
            enhanced = image_prompt
            if self._prompt_enhancer is not None:
                enhanced = self._prompt_enhancer.enhance(image_prompt)
            images = self._image_generator.generate_images(enhanced, "1:1", 1)
            content = Artifact(
                kind=IMAGE_KIND,
                fields={"prompt": image_prompt, "enhanced_prompt": enhanced, "images": images},
            )
            sources = []
        except Exception as e:
            logger.error("Image generation failed for session %s: %s", target, e)
            content, sources = StreamAccumulator().fail()
            status = TurnStatus.FAILED

        final = self.sessions.replace_message(
            target, reply.id, content, sources, MessageState.FINALIZED,
        )
        return TurnResult(
            status=status, session=final, economy=self.economy.snapshot(), cost=cost,
        )

    def study_follow_up(self, kind: str, topic: str, target: str | None = None) -> TurnResult:
        """Ask for a review or a quiz on a topic studied earlier."""
        if kind not in STUDY_FOLLOW_UP_PROMPTS:
            raise ValueError(f"Unknown study follow-up {kind!r}")
        return self.submit_message(STUDY_FOLLOW_UP_PROMPTS[kind].format(topic=topic), target)

    def wait_for_background(self) -> None:
        """Block until pending profile extractions finish."""
        self._extraction.wait()

    def close(self) -> None:
        self._extraction.shutdown()
        close = getattr(self._store, "close", None)
        if close is not None:
            close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self, persona_id: str | None = None, settings: ChatSettings | None = None,
    ) -> Session:
        persona = self.state.require_persona(persona_id) if persona_id else None
        return self.sessions.create(settings or self.state.default_settings, persona)

    def create_ephemeral_session(
        self, persona_id: str | None = None, settings: ChatSettings | None = None,
    ) -> Session:
        persona = self.state.require_persona(persona_id) if persona_id else None
        return self.sessions.create_ephemeral(settings or self.state.default_settings, persona)

    def select_session(self, session_id: str) -> Session:
        return self.sessions.select(session_id)

    def delete_session(self, session_id: str) -> Session | None:
        """Delete a session; returns the newly active session, if any."""
        self.sessions.delete(session_id)
        return self.sessions.active_session()

    def get_session(self, session_id: str | None = None) -> Session:
        return self.sessions.require(self._resolve(session_id))

    def active_session(self) -> Session | None:
        return self.sessions.active_session()

    def list_sessions(self) -> list[Session]:
        return self.sessions.list_sessions()

    def rename_session(self, title: str, target: str | None = None) -> Session:
        return self.sessions.rename(self._resolve(target), title)

    def update_settings(self, settings: ChatSettings, target: str | None = None) -> Session:
        return self.sessions.update_settings(self._resolve(target), settings)

    def add_knowledge(self, name: str, text: str, target: str | None = None) -> Session:
        return self.sessions.add_knowledge(self._resolve(target), KnowledgeFile(name=name, text=text))

    def remove_knowledge(self, name: str, target: str | None = None) -> Session:
        return self.sessions.remove_knowledge(self._resolve(target), name)

    def update_message_content(
        self, message_id: str, content: Narrative | Artifact, target: str | None = None,
    ) -> Session:
        """Replace a finalized message's content, e.g. a resume template switch."""
        target = self._resolve(target)
        session = self.sessions.require(target)
        for message in session.messages:
            if message.id == message_id:
                return self.sessions.replace_message(
                    target, message_id, content, message.sources, MessageState.FINALIZED,
                )
        raise KeyError(message_id)

    # ------------------------------------------------------------------
    # Economy
    # ------------------------------------------------------------------

    def balance(self) -> EconomyState:
        return self.economy.snapshot()

    # ------------------------------------------------------------------
    # Personas, memories, profile
    # ------------------------------------------------------------------

    def list_personas(self) -> list[Persona]:
        return list(self.state.personas)

    def add_persona(self, name: str, directive_override: str, **kwargs) -> Persona:
        return self.state.add_persona(name, directive_override, **kwargs)

    def update_persona(self, persona_id: str, **changes) -> Persona:
        return self.state.update_persona(persona_id, **changes)

    def delete_persona(self, persona_id: str) -> None:
        self.state.delete_persona(persona_id)

    def add_general_memory(self, text: str) -> list[str]:
        return self.state.add_general_memory(text)

    def remove_general_memory(self, text: str) -> list[str]:
        return self.state.remove_general_memory(text)

    def pin_message(self, message_id: str, target: str | None = None) -> list[Message]:
        session = self.sessions.require(self._resolve(target))
        for message in session.messages:
            if message.id == message_id:
                return self.state.pin_message(message)
        raise KeyError(message_id)

    def unpin_message(self, message_id: str) -> list[Message]:
        return self.state.unpin_message(message_id)

    def profile(self) -> UserProfile:
        return UserProfile(**self.state.profile.to_dict())

    def set_default_settings(self, settings: ChatSettings) -> ChatSettings:
        return self.state.set_default_settings(settings)
