"""CLI: nova-chat chat, sessions, balance, personas, serve, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from ..config import load_config, validate_config
from ..types import Artifact, NovaChatError, Session, TurnStatus


def _engine(args):
    from ..engine import ConversationEngine

    try:
        return ConversationEngine(config_path=args.config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _render(message) -> str:
    if isinstance(message.content, Artifact):
        return json.dumps(message.content.as_dict(), indent=2, ensure_ascii=False)
    return message.content.text


def _print_reply(result) -> None:
    if result.status == TurnStatus.INSUFFICIENT_BALANCE:
        print(f"[{result.notice}] (cost {result.cost}, balance {result.economy.balance})")
        return
    print(_render(result.session.messages[-1]))
    for i, source in enumerate(result.session.messages[-1].sources, 1):
        print(f"  [{i}] {source.title or source.uri} <{source.uri}>")
    print(f"-- cost {result.cost}, balance {result.economy.balance}")


def cmd_chat(args):
    """Interactive chat, or a single turn with --prompt."""
    engine = _engine(args)
    try:
        if args.ephemeral:
            engine.create_ephemeral_session(persona_id=args.persona)
        elif args.session:
            engine.select_session(args.session)
        elif args.persona or engine.active_session() is None:
            engine.create_session(persona_id=args.persona)

        if args.prompt:
            _print_reply(engine.submit_message(args.prompt))
            return

        session = engine.active_session()
        print(f"nova-chat: {session.title} ({session.id}). Ctrl+D to exit.")
        while True:
            try:
                prompt = input("> ").strip()
            except EOFError:
                print()
                break
            if not prompt:
                continue
            _print_reply(engine.submit_message(prompt))
    except NovaChatError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.wait_for_background()
        engine.close()


def _print_session_row(session: Session, active: str | None) -> None:
    marker = "*" if session.id == active else " "
    print(f"{marker} {session.id:<16} {len(session.messages):>5}  {session.title}")


def cmd_sessions(args):
    """List, show or delete sessions."""
    engine = _engine(args)
    try:
        action = args.sessions_action or "list"
        if action == "list":
            sessions = engine.list_sessions()
            if not sessions:
                print("No sessions yet.")
                return
            print(f"  {'ID':<16} {'Msgs':>5}  Title")
            print("-" * 60)
            active = engine.sessions.active_target
            for session in sessions:
                _print_session_row(session, active)
        elif action == "show":
            session = engine.get_session(args.session_id)
            print(f"{session.title} ({session.id})")
            print("=" * 60)
            for message in session.messages:
                print(f"\n[{message.role.value}]")
                print(_render(message))
        elif action == "delete":
            active = engine.delete_session(args.session_id)
            print(f"Deleted {args.session_id}.")
            if active is not None:
                print(f"Active session: {active.title} ({active.id})")
    except NovaChatError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.close()


def cmd_balance(args):
    """Show the point balance."""
    engine = _engine(args)
    try:
        state = engine.balance()
        print(f"Balance:    {state.balance}")
        print(f"Reset day:  {state.last_reset_day}")
        print(f"Allotment:  {engine.config.economy.daily_allotment}/day")
    finally:
        engine.close()


def cmd_personas(args):
    """List personas."""
    engine = _engine(args)
    try:
        personas = engine.list_personas()
        if not personas:
            print("No personas.")
            return
        for persona in personas:
            print(f"{persona.icon or '-':<3} {persona.id:<22} {persona.name}")
    finally:
        engine.close()


def cmd_serve(args):
    """Start the HTTP API."""
    try:
        import uvicorn
        from ..api import create_app
    except ImportError:
        print("Run: pip install nova-chat", file=sys.stderr)
        sys.exit(1)

    app = create_app(config_path=args.config)
    print(f"nova-chat API on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Locale: {config.locale}")
        print(f"  Daily allotment: {config.economy.daily_allotment}")
        print(f"  Provider: {config.provider.base_url} ({config.provider.model})")
        print(f"  Storage: {config.storage.backend}")


def main():
    parser = argparse.ArgumentParser(
        prog="nova-chat",
        description="Conversational assistant with sessions, personas and a point economy",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # chat
    chat_parser = subparsers.add_parser("chat", help="Chat in the terminal")
    chat_parser.add_argument("--prompt", "-p", help="Send one message and exit")
    chat_parser.add_argument("--ephemeral", action="store_true", help="Use a temporary chat")
    chat_parser.add_argument("--session", "-s", help="Continue an existing session")
    chat_parser.add_argument("--persona", help="Start a new session with this persona id")

    # sessions
    sessions_parser = subparsers.add_parser("sessions", help="Manage sessions")
    sessions_sub = sessions_parser.add_subparsers(dest="sessions_action")
    sessions_sub.add_parser("list", help="List sessions, newest first")
    show_parser = sessions_sub.add_parser("show", help="Print a session transcript")
    show_parser.add_argument("session_id", help="Session id")
    delete_parser = sessions_sub.add_parser("delete", help="Delete a session")
    delete_parser.add_argument("session_id", help="Session id")

    # balance
    subparsers.add_parser("balance", help="Show the point balance")

    # personas
    subparsers.add_parser("personas", help="List personas")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--port", "-p", type=int, default=8000)
    serve_parser.add_argument("--host", default="127.0.0.1")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "chat":
        cmd_chat(args)
    elif args.command == "sessions":
        cmd_sessions(args)
    elif args.command == "balance":
        cmd_balance(args)
    elif args.command == "personas":
        cmd_personas(args)
    elif args.command == "serve":
        cmd_serve(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: nova-chat config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
