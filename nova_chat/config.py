"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    DEFAULT_COMMAND_COSTS,
    ChatSettings,
    EconomyConfig,
    NovaChatConfig,
    ProviderConfig,
    RetrieverConfig,
    SessionConfig,
    StorageConfig,
)

CONFIG_FILENAMES = [
    "nova-chat.yaml",
    "nova-chat.yml",
    "nova-chat.json",
]

SUPPORTED_LOCALES = ("en", "ar")
STORAGE_BACKENDS = ("sqlite", "filesystem", "memory")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _parse_settings(raw: dict[str, Any]) -> ChatSettings:
    return ChatSettings(
        search_enabled=bool(raw.get("search_enabled", False)),
        deep_thinking=bool(raw.get("deep_thinking", False)),
        scientific_mode=bool(raw.get("scientific_mode", False)),
    )


def _build_config(raw: dict[str, Any]) -> NovaChatConfig:
    """Build a NovaChatConfig from a raw dict."""
    economy_raw = raw.get("economy", {})
    command_costs = dict(DEFAULT_COMMAND_COSTS)
    if "command_costs" in economy_raw:
        command_costs = {
            str(prefix): int(cost)
            for prefix, cost in (economy_raw.get("command_costs") or {}).items()
        }
    economy = EconomyConfig(
        daily_allotment=economy_raw.get("daily_allotment", 300),
        command_costs=command_costs,
        deep_thinking_cost=economy_raw.get("deep_thinking_cost", 5),
        scientific_mode_cost=economy_raw.get("scientific_mode_cost", 10),
    )

    retriever_raw = raw.get("retriever", {})
    retriever = RetrieverConfig(
        max_snippets=retriever_raw.get("max_snippets", 3),
        min_shared_words=retriever_raw.get("min_shared_words", 2),
        min_word_length=retriever_raw.get("min_word_length", 4),
    )

    session_raw = raw.get("session", {})
    session = SessionConfig(
        title_max_chars=session_raw.get("title_max_chars", 30),
        new_chat_title=session_raw.get("new_chat_title", "New chat"),
        ephemeral_title=session_raw.get("ephemeral_title", "Temporary chat"),
    )

    # Storage
    storage_raw = raw.get("storage", {})
    storage_root = raw.get("storage_root", ".nova-chat")
    storage = StorageConfig(
        backend=storage_raw.get("backend", "sqlite"),
        root=storage_raw.get("root", storage_root + "/store"),
        sqlite_path=storage_raw.get("sqlite_path", storage_root + "/store.db"),
    )

    provider_raw = raw.get("provider", {})
    provider = ProviderConfig(
        base_url=provider_raw.get("base_url", "https://api.openai.com/v1"),
        model=provider_raw.get("model", "gpt-4o-mini"),
        api_key_env=provider_raw.get("api_key_env", "OPENAI_API_KEY"),
        temperature=provider_raw.get("temperature", 0.7),
        max_tokens=provider_raw.get("max_tokens", 4096),
        image_model=provider_raw.get("image_model", "gpt-image-1"),
        extraction_model=provider_raw.get("extraction_model", ""),
        search_model=provider_raw.get("search_model", ""),
        timeout=provider_raw.get("timeout", 120.0),
    )

    return NovaChatConfig(
        version=str(raw.get("version", "0.1")),
        locale=raw.get("locale", "en"),
        economy=economy,
        retriever=retriever,
        session=session,
        storage=storage,
        provider=provider,
        defaults=_parse_settings(raw.get("defaults", {})),
    )


def validate_config(config: NovaChatConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.locale not in SUPPORTED_LOCALES:
        errors.append(
            f"locale '{config.locale}' is not supported "
            f"(expected one of: {', '.join(SUPPORTED_LOCALES)})"
        )

    if config.economy.daily_allotment < 0:
        errors.append("economy.daily_allotment must be >= 0")

    for prefix, cost in config.economy.command_costs.items():
        if not prefix.startswith("/"):
            errors.append(f"Command prefix '{prefix}' must start with '/'")
        if cost < 0:
            errors.append(f"Command cost for '{prefix}' must be >= 0")

    if config.economy.deep_thinking_cost < 0 or config.economy.scientific_mode_cost < 0:
        errors.append("Mode surcharges must be >= 0")

    if config.retriever.max_snippets < 0:
        errors.append("retriever.max_snippets must be >= 0")

    if config.retriever.min_shared_words < 1:
        errors.append("retriever.min_shared_words must be >= 1")

    if config.session.title_max_chars < 1:
        errors.append("session.title_max_chars must be >= 1")

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"storage.backend '{config.storage.backend}' is not supported "
            f"(expected one of: {', '.join(STORAGE_BACKENDS)})"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> NovaChatConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
