"""Tests for configuration loading and validation."""

import json
import tempfile

import pytest
import yaml

from nova_chat.config import load_config, validate_config
from nova_chat.types import DEFAULT_COMMAND_COSTS


class TestLoadConfig:
    def test_load_defaults(self):
        config = load_config(config_dict={})
        assert config.version == "0.1"
        assert config.locale == "en"
        assert config.economy.daily_allotment == 300
        assert config.economy.command_costs == DEFAULT_COMMAND_COSTS
        assert config.economy.deep_thinking_cost == 5
        assert config.economy.scientific_mode_cost == 10
        assert config.retriever.max_snippets == 3
        assert config.session.title_max_chars == 30
        assert config.storage.backend == "sqlite"
        assert config.storage.sqlite_path == ".nova-chat/store.db"

    def test_load_from_dict(self):
        config = load_config(config_dict={
            "locale": "ar",
            "economy": {"daily_allotment": 100, "command_costs": {"/image ": 5}},
            "provider": {"model": "llama3", "base_url": "http://127.0.0.1:11434/v1"},
            "defaults": {"deep_thinking": True},
        })
        assert config.locale == "ar"
        assert config.economy.daily_allotment == 100
        assert config.economy.command_costs == {"/image ": 5}
        assert config.provider.model == "llama3"
        assert config.defaults.deep_thinking is True

    def test_storage_root_shortcut(self):
        config = load_config(config_dict={"storage_root": "/tmp/nc"})
        assert config.storage.root == "/tmp/nc/store"
        assert config.storage.sqlite_path == "/tmp/nc/store.db"

    def test_load_from_yaml_file(self):
        raw = {"locale": "ar", "retriever": {"max_snippets": 5}}
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            yaml.dump(raw, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.retriever.max_snippets == 5

    def test_load_from_json_file(self):
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as f:
            json.dump({"session": {"title_max_chars": 12}}, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.session.title_max_chars == 12

    def test_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "nova-chat.yaml").write_text("locale: ar\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert load_config().locale == "ar"

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            load_config(config_path="/nonexistent/path.yaml")


class TestValidateConfig:
    def test_valid_default_config(self):
        assert validate_config(load_config(config_dict={})) == []

    def test_unsupported_locale(self):
        errors = validate_config(load_config(config_dict={"locale": "fr"}))
        assert any("locale" in e for e in errors)

    def test_command_prefix_must_start_with_slash(self):
        config = load_config(config_dict={"economy": {"command_costs": {"image ": 20}}})
        errors = validate_config(config)
        assert any("must start with '/'" in e for e in errors)

    def test_negative_costs(self):
        config = load_config(config_dict={"economy": {"deep_thinking_cost": -1}})
        assert any("surcharges" in e for e in validate_config(config))

    def test_min_shared_words(self):
        config = load_config(config_dict={"retriever": {"min_shared_words": 0}})
        assert any("min_shared_words" in e for e in validate_config(config))

    def test_invalid_storage_backend(self):
        config = load_config(config_dict={})
        config.storage.backend = "redis"
        errors = validate_config(config)
        assert any("storage.backend" in e for e in errors)
