"""HTTP API: FastAPI app over a ConversationEngine.

Blocking engine calls run in worker threads via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..engine import ConversationEngine
from ..storage.helpers import economy_to_dict, session_to_dict, settings_from_dict
from ..types import (
    Attachment,
    PersonaNotFoundError,
    SessionBusyError,
    SessionNotFoundError,
    TurnResult,
    TurnStatus,
)

logger = logging.getLogger(__name__)


def _turn_to_dict(result: TurnResult) -> dict:
    return {
        "status": result.status.value,
        "cost": result.cost,
        "notice": result.notice,
        "economy": economy_to_dict(result.economy),
        "session": session_to_dict(result.session) if result.session else None,
    }


def _session_payload(engine: ConversationEngine, session) -> dict:
    data = session_to_dict(session)
    data["ephemeral"] = session.ephemeral
    data["active"] = engine.sessions.active_target == session.id
    return data


async def _json_body(request: Request) -> dict:
    if not await request.body():
        return {}
    body = await request.json()
    return body if isinstance(body, dict) else {}


def create_app(
    config_path: str | None = None,
    *,
    engine: ConversationEngine | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config_path: Path to a nova-chat config file.
        engine: Use an existing engine instead of building one (tests).
    """
    if engine is None:
        engine = ConversationEngine(config_path=config_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        yield
        await asyncio.to_thread(engine.wait_for_background)

    app = FastAPI(title="nova-chat", lifespan=lifespan)
    app.state.engine = engine

    @app.exception_handler(SessionNotFoundError)
    async def _session_not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse({"error": f"Session not found: {exc.args[0]}"}, status_code=404)

    @app.exception_handler(PersonaNotFoundError)
    async def _persona_not_found(request: Request, exc: PersonaNotFoundError):
        return JSONResponse({"error": f"Persona not found: {exc.args[0]}"}, status_code=404)

    @app.exception_handler(SessionBusyError)
    async def _session_busy(request: Request, exc: SessionBusyError):
        return JSONResponse({"error": str(exc)}, status_code=409)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    @app.get("/sessions")
    async def list_sessions():
        sessions = await asyncio.to_thread(engine.list_sessions)
        return JSONResponse({
            "sessions": [
                {"id": s.id, "title": s.title, "message_count": len(s.messages)}
                for s in sessions
            ],
            "active_session_id": engine.sessions.active_target,
        })

    @app.post("/sessions")
    async def create_session(request: Request):
        body = await _json_body(request)
        settings = settings_from_dict(body["settings"]) if "settings" in body else None
        session = await asyncio.to_thread(
            engine.create_session, body.get("persona_id"), settings,
        )
        return JSONResponse(_session_payload(engine, session), status_code=201)

    @app.post("/sessions/ephemeral")
    async def create_ephemeral(request: Request):
        body = await _json_body(request)
        settings = settings_from_dict(body["settings"]) if "settings" in body else None
        session = await asyncio.to_thread(
            engine.create_ephemeral_session, body.get("persona_id"), settings,
        )
        return JSONResponse(_session_payload(engine, session), status_code=201)

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        session = await asyncio.to_thread(engine.get_session, session_id)
        return JSONResponse(_session_payload(engine, session))

    @app.post("/sessions/{session_id}/select")
    async def select_session(session_id: str):
        session = await asyncio.to_thread(engine.select_session, session_id)
        return JSONResponse(_session_payload(engine, session))

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str):
        active = await asyncio.to_thread(engine.delete_session, session_id)
        return JSONResponse({
            "deleted": session_id,
            "active_session_id": active.id if active else None,
        })

    @app.patch("/sessions/{session_id}/settings")
    async def update_settings(session_id: str, request: Request):
        body = await _json_body(request)
        current = await asyncio.to_thread(engine.get_session, session_id)
        merged = {
            "search_enabled": current.settings.search_enabled,
            "deep_thinking": current.settings.deep_thinking,
            "scientific_mode": current.settings.scientific_mode,
            **body,
        }
        session = await asyncio.to_thread(
            engine.update_settings, settings_from_dict(merged), session_id,
        )
        return JSONResponse(_session_payload(engine, session))

    @app.post("/sessions/{session_id}/knowledge")
    async def add_knowledge(session_id: str, request: Request):
        body = await _json_body(request)
        name = body.get("name", "")
        if not name:
            return JSONResponse({"error": "Missing 'name' field"}, status_code=400)
        session = await asyncio.to_thread(
            engine.add_knowledge, name, body.get("text", ""), session_id,
        )
        return JSONResponse(_session_payload(engine, session))

    @app.delete("/sessions/{session_id}/knowledge/{name}")
    async def remove_knowledge(session_id: str, name: str):
        session = await asyncio.to_thread(engine.remove_knowledge, name, session_id)
        return JSONResponse(_session_payload(engine, session))

    @app.post("/sessions/{session_id}/messages")
    async def submit_message(session_id: str, request: Request):
        body = await _json_body(request)
        prompt = body.get("prompt", "")
        if not prompt.strip():
            return JSONResponse({"error": "Missing 'prompt' field"}, status_code=400)
        attachments = [
            Attachment(name=a["name"], mime_type=a.get("mime_type", ""), ref=a.get("ref", ""))
            for a in body.get("attachments", []) or []
            if isinstance(a, dict) and a.get("name")
        ]
        result = await asyncio.to_thread(
            engine.submit_message, prompt, session_id, attachments,
        )
        status_code = 402 if result.status == TurnStatus.INSUFFICIENT_BALANCE else 200
        return JSONResponse(_turn_to_dict(result), status_code=status_code)

    # -----------------------------------------------------------------------
    # Economy
    # -----------------------------------------------------------------------

    @app.get("/economy")
    async def economy():
        state = await asyncio.to_thread(engine.balance)
        return JSONResponse(economy_to_dict(state))

    return app
