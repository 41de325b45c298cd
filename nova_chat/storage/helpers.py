"""Shared helpers for storage backends: timestamps and JSON codecs."""

from __future__ import annotations

from datetime import datetime

from ..types import (
    Artifact,
    Attachment,
    ChatSettings,
    EconomyState,
    KnowledgeFile,
    Message,
    MessageState,
    Narrative,
    Persona,
    Role,
    Session,
    Source,
    UserProfile,
)


def dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def content_to_dict(content: Narrative | Artifact) -> dict:
    if isinstance(content, Artifact):
        return {"type": "artifact", "kind": content.kind, "fields": content.fields}
    return {"type": "narrative", "text": content.text}


def content_from_dict(data: dict) -> Narrative | Artifact:
    if data.get("type") == "artifact":
        return Artifact(kind=data["kind"], fields=dict(data.get("fields") or {}))
    return Narrative(text=data.get("text", ""))


def message_to_dict(message: Message) -> dict:
    return {
        "id": message.id,
        "role": message.role.value,
        "content": content_to_dict(message.content),
        "sources": [{"uri": s.uri, "title": s.title} for s in message.sources],
        "attachments": [
            {"name": a.name, "mime_type": a.mime_type, "ref": a.ref}
            for a in message.attachments
        ],
    }


def message_from_dict(data: dict) -> Message:
    return Message(
        id=data["id"],
        role=Role(data["role"]),
        content=content_from_dict(data.get("content") or {}),
        sources=[Source(uri=s["uri"], title=s.get("title", "")) for s in data.get("sources", [])],
        attachments=[
            Attachment(name=a["name"], mime_type=a.get("mime_type", ""), ref=a.get("ref", ""))
            for a in data.get("attachments", [])
        ],
        state=MessageState.FINALIZED,
    )


# ---------------------------------------------------------------------------
# Sessions, personas, profile, economy
# ---------------------------------------------------------------------------

def settings_to_dict(settings: ChatSettings) -> dict:
    return {
        "search_enabled": settings.search_enabled,
        "deep_thinking": settings.deep_thinking,
        "scientific_mode": settings.scientific_mode,
    }


def settings_from_dict(data: dict | None) -> ChatSettings:
    data = data or {}
    return ChatSettings(
        search_enabled=bool(data.get("search_enabled", False)),
        deep_thinking=bool(data.get("deep_thinking", False)),
        scientific_mode=bool(data.get("scientific_mode", False)),
    )


def knowledge_to_list(files: list[KnowledgeFile]) -> list[dict]:
    return [{"name": f.name, "text": f.text} for f in files]


def knowledge_from_list(data: list | None) -> list[KnowledgeFile]:
    return [KnowledgeFile(name=f["name"], text=f.get("text", "")) for f in data or []]


def session_to_dict(session: Session) -> dict:
    """Serialize a session. Provisional messages are never written."""
    return {
        "id": session.id,
        "title": session.title,
        "titled": session.titled,
        "persona_id": session.persona_id,
        "settings": settings_to_dict(session.settings),
        "knowledge": knowledge_to_list(session.knowledge),
        "messages": [
            message_to_dict(m) for m in session.messages
            if m.state == MessageState.FINALIZED
        ],
    }


def session_from_dict(data: dict) -> Session:
    return Session(
        id=data["id"],
        title=data.get("title", ""),
        titled=bool(data.get("titled", False)),
        persona_id=data.get("persona_id"),
        settings=settings_from_dict(data.get("settings")),
        knowledge=knowledge_from_list(data.get("knowledge")),
        messages=[message_from_dict(m) for m in data.get("messages", [])],
    )


def persona_to_dict(persona: Persona) -> dict:
    return {
        "id": persona.id,
        "name": persona.name,
        "icon": persona.icon,
        "directive_override": persona.directive_override,
        "knowledge": knowledge_to_list(persona.knowledge),
        "greeting": persona.greeting,
    }


def persona_from_dict(data: dict) -> Persona:
    return Persona(
        id=data["id"],
        name=data.get("name", ""),
        icon=data.get("icon", ""),
        directive_override=data.get("directive_override", ""),
        knowledge=knowledge_from_list(data.get("knowledge")),
        greeting=data.get("greeting", ""),
    )


def profile_from_dict(data: dict | None) -> UserProfile:
    data = data or {}
    return UserProfile(
        name=data.get("name", "") or "",
        profession=data.get("profession", "") or "",
        interests=list(data.get("interests") or []),
        facts=list(data.get("facts") or []),
    )


def economy_to_dict(state: EconomyState) -> dict:
    return {"balance": state.balance, "last_reset_day": state.last_reset_day}


def economy_from_dict(data: dict | None) -> EconomyState | None:
    if not data:
        return None
    return EconomyState(
        balance=int(data.get("balance", 0)),
        last_reset_day=str(data.get("last_reset_day", "")),
    )
