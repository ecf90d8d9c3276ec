"""
SkinDoc — FastAPI Server

================================================================================
Architecture:
  • One SessionManager per WebSocket client, kept in a SessionRegistry
  • The manager provisions a Tavus conversation (or a demo one when no
    API key is configured) and joins it through the call object
  • The UI is a pure observer: it receives lifecycle, roster, event and
    notice messages and can only send the three user commands
================================================================================

Endpoints:
  WS  /ws/session           — per-client session stream
  GET /health               — server health
  GET /sessions             — list active sessions with snapshots
  GET /session/{session_id} — single session snapshot

Client → Server messages:
  { type: "join" }                           → provision + join a call
  { type: "leave" }                          → leave the call
  { type: "toggle_screen_share" }            → start/stop screen share
  { type: "snapshot" }                       → current session snapshot
  { type: "ping" }                           → keepalive

Server → Client messages:
  { type: "lifecycle", data: {...} }         → state transition
  { type: "roster", data: [...] }            → participants + track binding
  { type: "event", data: {...} }             → classified app message
  { type: "reply", data: {...} }             → reply sent to the agent
  { type: "notice", level, message }         → user-visible notice
  { type: "snapshot", data: {...} }          → full session snapshot
  { type: "pong" }                           → keepalive ack
  { type: "error", message: "..." }          → rejected command
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import provisioning_cfg, server_cfg
from .core.errors import SessionCommandError
from .services.registry import SessionRegistry

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("skindoc")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Session Registry
# ---------------------------------------------------------------------------

registry = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("SkinDoc backend starting...")
    logger.info(f"   Tavus API key configured: {provisioning_cfg.has_api_key}")
    yield
    logger.info("Shutting down, leaving all calls...")
    await registry.stop_all()
    logger.info("SkinDoc backend stopped")


app = FastAPI(
    title="SkinDoc — Personal Skin Doctor Calls",
    version=VERSION,
    description=(
        "Joins a video conversation with an AI skin-doctor persona, answers "
        "its tool calls and reacts to perception events over the call's "
        "app-message channel."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# REST Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "version": VERSION,
        "api_key_configured": provisioning_cfg.has_api_key,
        "active_sessions": registry.active_count,
    }


@app.get("/sessions")
async def list_sessions():
    return {sid: m.snapshot() for sid, m in registry.all_sessions.items()}


@app.get("/session/{session_id}")
async def session_detail(session_id: str):
    manager = registry.get(session_id)
    if manager is None:
        return JSONResponse(status_code=404, content={"error": "session not found"})
    return manager.snapshot()


# ---------------------------------------------------------------------------
# WebSocket: Per-Client Session Stream
# ---------------------------------------------------------------------------

@app.websocket("/ws/session")
async def websocket_session(ws: WebSocket):
    """One SessionManager per connection; stopped when the socket closes."""
    await ws.accept()

    session_id = uuid.uuid4().hex[:12]
    command_tasks: Set[asyncio.Task] = set()

    async def send(data: Dict[str, Any]) -> None:
        try:
            await ws.send_text(json.dumps(data, default=str))
        except Exception as e:
            logger.debug(f"[{session_id}] Send failed: {e}")

    async def on_state(status: Dict[str, Any]) -> None:
        await send({"type": "lifecycle", "data": status})

    async def on_roster(roster: Dict[str, Any]) -> None:
        await send({"type": "roster", "data": [p.to_dict() for p in roster.values()]})

    async def on_event(event: Any) -> None:
        await send({"type": "event", "data": event.to_dict()})

    async def on_notice(level: str, message: str) -> None:
        await send({"type": "notice", "level": level, "message": message})

    async def on_reply(reply: Any) -> None:
        await send({"type": "reply", "data": reply.to_dict()})

    manager = registry.create(
        session_id=session_id,
        on_state=on_state,
        on_roster=on_roster,
        on_event=on_event,
        on_notice=on_notice,
        on_reply=on_reply,
    )
    await send({"type": "snapshot", "data": manager.snapshot()})

    async def run_command(coro: Any) -> None:
        try:
            await coro
        except SessionCommandError as e:
            await send({"type": "error", "message": e.message})
        except Exception as e:
            logger.error(f"[{session_id}] Command failed: {e}", exc_info=True)
            await send({"type": "error", "message": f"Command failed: {str(e)[:100]}"})

    try:
        while True:
            raw = await ws.receive_text()

            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                continue

            msg_type = message.get("type", "") if isinstance(message, dict) else ""

            if msg_type == "join":
                # Joining can park on provisioning; keep reading leave/ping meanwhile
                task = asyncio.create_task(run_command(manager.join()))
                command_tasks.add(task)
                task.add_done_callback(command_tasks.discard)

            elif msg_type == "leave":
                await run_command(manager.leave())

            elif msg_type == "toggle_screen_share":
                await run_command(manager.toggle_screen_share())

            elif msg_type == "snapshot":
                await send({"type": "snapshot", "data": manager.snapshot()})

            elif msg_type == "ping":
                await send({"type": "pong"})

            else:
                await send({"type": "error", "message": f"Unknown message type: {msg_type!r}"})

    except WebSocketDisconnect:
        logger.info(f"[{session_id}] WebSocket disconnected")
    except Exception as e:
        logger.error(f"[{session_id}] WebSocket error: {e}", exc_info=True)
    finally:
        await registry.stop_session(session_id)
        for task in list(command_tasks):
            task.cancel()
        if command_tasks:
            await asyncio.gather(*command_tasks, return_exceptions=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "skindoc.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        reload=True,
        log_level="info",
    )
