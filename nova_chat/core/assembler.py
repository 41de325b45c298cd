"""ContextAssembler: build the directive string sent to the model."""

from __future__ import annotations

import json
import re

from ..types import (
    ARTIFACT_KINDS,
    ChatSettings,
    KnowledgeFile,
    Message,
    Persona,
    UserProfile,
)

DEFAULT_PERSONAS: dict[str, str] = {
    "en": (
        "You are Nova AI, a genius-level AI agent. Your primary language is English. "
        "Analyze the user's request and provide the most effective, professionally "
        "formatted output."
    ),
    "ar": (
        "أنت Nova AI، وكيل ذكاء اصطناعي عبقري. لغتك الأساسية هي العربية. "
        "قم بتحليل طلب المستخدم وقدم أفضل مخرجات ممكنة، مع تنسيق الرد بشكل احترافي وواضح."
    ),
}

LANGUAGE_NAMES: dict[str, str] = {"en": "English", "ar": "Arabic"}

_LANGUAGE_DECLARED_RE = re.compile(
    r"primary language (?:for responding )?is (?:Arabic|English)"
    r"|لغتك الأساسية هي (?:العربية|الإنجليزية)",
    re.IGNORECASE,
)

_ARTIFACT_DESCRIPTIONS: dict[str, str] = {
    "youtube_search_results": "For video searches.",
    "news_report": "For news queries.",
    "article_review": "For analyzing a single URL/article.",
    "table": "For tabular data.",
    "chart": "For chart data visualization.",
    "report": "For professional A4-style reports with sections.",
    "resume": "For generating a complete, professional resume.",
    "code_project": "For code analysis and generation.",
    "study_explanation": "For the interactive study mode when the user wants to learn a topic.",
    "study_review": "For reviewing a topic in study mode.",
    "study_quiz": "For quizzing the user in study mode.",
}

MODE_NOTES: dict[str, str] = {
    "deep_thinking": (
        "- **Deep Thinking:** Provide in-depth, analytical, and comprehensive answers."
    ),
    "scientific_mode": (
        "- **Scientific Mode:** Use a formal, academic tone. Cite scientific principles "
        "and provide data-driven explanations."
    ),
    "search_enabled": (
        "- **Internet Search:** You may search the web for up-to-date information. "
        "If you do, you MUST include the sources in the final response."
    ),
}


def _task_rules() -> str:
    kinds = "\n".join(
        f"    - `{kind}`: {_ARTIFACT_DESCRIPTIONS[kind]}" for kind in sorted(ARTIFACT_KINDS)
    )
    return (
        "\n\n**Core Task Directives & Rich Content Formatting:**\n"
        "- Choose between two response modes: a structured JSON object for specific "
        "tasks, or rich text (Markdown) for explanations and conversation.\n\n"
        "**1. JSON Object Responses (High Priority):**\n"
        "- If the prompt starts with a command (`/youtube`, `/resume`, etc.), clearly "
        "requests a data structure, or starts a study session, respond with ONLY the raw "
        "JSON object. The object MUST carry a `kind` field naming one of:\n"
        f"{kinds}\n\n"
        "**2. Rich Text (Markdown) Responses:**\n"
        "- Formulas: LaTeX enclosed in double dollar signs, e.g. `$$E = mc^2$$`.\n"
        "- Diagrams: valid Mermaid syntax inside a `mermaid` code block. Node ids are "
        "simple alphanumeric English; quote labels with spaces or non-English text.\n"
        "- Tables: standard Markdown table syntax."
    )


def _memory_text(message: Message) -> str:
    text = message.text
    if text is not None:
        return text
    return json.dumps(message.content.as_dict(), ensure_ascii=False)


class ContextAssembler:
    """Assemble the directive. ``build`` depends only on its arguments.

    Section order (top to bottom):
    1. Base persona text plus a language directive when none is declared
    2. Task formatting rules (artifact kinds, narrative conventions)
    3. Personalization: profile, general memories, pinned memories,
       knowledge files, retrieved past conversations
    4. Behavioral mode notes for enabled settings
    """

    def build(
        self,
        settings: ChatSettings,
        profile: UserProfile,
        general_memories: list[str],
        persona: Persona | None,
        session_knowledge: list[KnowledgeFile],
        pinned_memories: list[Message],
        retrieved_context: str,
        locale: str,
    ) -> str:
        if locale not in DEFAULT_PERSONAS:
            raise ValueError(f"Unsupported locale: {locale!r}")

        if persona is not None:
            directive = persona.directive_override
        else:
            directive = DEFAULT_PERSONAS[locale]
        if not _LANGUAGE_DECLARED_RE.search(directive):
            directive += f" Your primary language for responding is {LANGUAGE_NAMES[locale]}."

        knowledge = list(persona.knowledge) if persona is not None else []
        knowledge.extend(session_knowledge)
        files = "\n".join(
            f"--- FILE: {f.name} ---\n{f.text}\n--- END FILE ---" for f in knowledge
        )
        pinned = ", ".join(f'User said: "{_memory_text(m)}"' for m in pinned_memories)

        sections = [
            directive,
            _task_rules(),
            "\n\n**Personalization & Context:**",
            f"\n- **User Profile:** {json.dumps(profile.to_dict(), ensure_ascii=False)}",
            f"\n- **General Memories (Apply Globally):** {', '.join(general_memories)}",
            f"\n- **Saved Memories (High Importance):** {pinned}",
            f"\n- **Current Session Knowledge Files:**\n{files}",
            f"\n- **Relevant Past Conversations:** {retrieved_context}",
        ]

        notes = [
            MODE_NOTES[flag]
            for flag in ("deep_thinking", "scientific_mode", "search_enabled")
            if getattr(settings, flag)
        ]
        if notes:
            sections.append("\n\n**Operational Modes:**\n" + "\n".join(notes))

        return "".join(sections)
