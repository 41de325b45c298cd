"""Tests for the `nova-chat` CLI."""

from __future__ import annotations

import subprocess
import sys

import pytest

from nova_chat.cli import main as cli_main


@pytest.fixture()
def tmp_cwd(tmp_path, monkeypatch):
    """Run test in a clean temporary directory with a filesystem-backed config."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "nova-chat.yaml").write_text(
        "locale: en\n"
        "storage:\n"
        "  backend: filesystem\n"
        "  root: ./store\n"
        "economy:\n"
        "  daily_allotment: 120\n"
    )
    return tmp_path


def _run_cli(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "nova_chat.cli.main", *args],
        capture_output=True,
        text=True,
    )


def test_config_validate_ok(tmp_cwd):
    result = _run_cli("config", "validate")
    assert result.returncode == 0
    assert "Config is valid." in result.stdout
    assert "Daily allotment: 120" in result.stdout
    assert "Storage: filesystem" in result.stdout


def test_config_validate_reports_errors(tmp_cwd):
    bad = tmp_cwd / "bad.yaml"
    bad.write_text("locale: fr\nstorage:\n  backend: redis\n")
    result = _run_cli("--config", str(bad), "config", "validate")
    assert result.returncode == 1
    assert "locale 'fr' is not supported" in result.stdout
    assert "storage.backend 'redis' is not supported" in result.stdout


def test_config_validate_missing_file(tmp_cwd):
    result = _run_cli("--config", "nope.yaml", "config", "validate")
    assert result.returncode == 1
    assert "Config file not found" in result.stderr


def test_invalid_config_refused_before_use(tmp_cwd):
    bad = tmp_cwd / "bad.yaml"
    bad.write_text("locale: fr\nstorage:\n  backend: filesystem\n  root: ./bad-store\n")
    result = _run_cli("--config", str(bad), "balance")
    assert result.returncode == 1
    assert "locale 'fr' is not supported" in result.stderr
    assert not (tmp_cwd / "bad-store").exists()


def test_balance(tmp_cwd):
    result = _run_cli("balance")
    assert result.returncode == 0
    assert "Balance:    120" in result.stdout
    assert (tmp_cwd / "store" / "values" / "economy.json").exists()


def test_personas_lists_default(tmp_cwd):
    result = _run_cli("personas")
    assert result.returncode == 0
    assert "Study Buddy" in result.stdout


def test_sessions_list_empty(tmp_cwd):
    result = _run_cli("sessions")
    assert result.returncode == 0
    assert "No sessions yet." in result.stdout


def test_no_command_prints_help(tmp_cwd):
    result = _run_cli()
    assert result.returncode == 1
    assert "usage" in result.stdout.lower()


class TestInProcess:
    """Commands that talk to a model run against the fake engine."""

    @pytest.fixture
    def run(self, engine, monkeypatch, capsys):
        monkeypatch.setattr(cli_main, "_engine", lambda args: engine)

        def _run(*argv: str) -> str:
            monkeypatch.setattr(sys, "argv", ["nova-chat", *argv])
            cli_main.main()
            return capsys.readouterr().out

        return _run

    def test_chat_single_prompt(self, run, engine):
        out = run("chat", "--prompt", "Hello there")
        assert "Hello! I'm a test assistant." in out
        assert "-- cost 0, balance" in out
        assert len(engine.list_sessions()) == 1

    def test_chat_insufficient_balance(self, run, engine):
        engine.economy.set_balance(0)
        out = run("chat", "-p", "/report on tides")
        assert "Points reset daily." in out
        assert "cost 75" in out

    def test_chat_unknown_session_exits(self, run, capsys):
        with pytest.raises(SystemExit) as exc:
            run("chat", "--session", "000000000000001", "-p", "hi")
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_sessions_show(self, run, engine):
        engine.create_session()
        engine.submit_message("What is a tide?")
        sid = engine.sessions.active_target
        out = run("sessions", "show", sid)
        assert "[user]" in out
        assert "What is a tide?" in out
        assert "[model]" in out
