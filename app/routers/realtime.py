"""
WebSocket transport for collaboration rooms.

Connect to ``/ws?userId=..&userName=..&userImage=..`` (identity optional;
without ``userId`` the socket is an anonymous viewer) and send commands:

    {"event": "join_idea_room",  "ideaId": 42}
    {"event": "leave_idea_room", "ideaId": 42}

Server events arrive as ``{"event": <name>, "data": <payload>}``:
``joined`` / ``left`` acknowledge a command, ``new_message``,
``user_joined`` and ``user_left`` are room traffic, ``error`` reports a bad
command without closing the socket.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.services.room_registry import RoomRegistry, RoomUser

logger = logging.getLogger(__name__)

router = APIRouter()

JOIN_COMMAND = "join_idea_room"
LEAVE_COMMAND = "leave_idea_room"


def _parse_command(raw: str) -> Dict[str, Any]:
    """Decode one client frame.  Raises ValueError describing what is wrong."""
    try:
        command = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("Command must be a JSON object.")
    if not isinstance(command, dict):
        raise ValueError("Command must be a JSON object.")

    event = command.get("event")
    if event not in (JOIN_COMMAND, LEAVE_COMMAND):
        raise ValueError(f"Unknown event {event!r}.")

    idea_id = command.get("ideaId")
    if isinstance(idea_id, str) and idea_id.isdigit():
        idea_id = int(idea_id)
    if not isinstance(idea_id, int) or isinstance(idea_id, bool):
        raise ValueError("ideaId must be an integer.")

    return {"event": event, "idea_id": idea_id}


def _handle_command(registry: RoomRegistry, websocket: WebSocket, raw: str) -> None:
    try:
        command = _parse_command(raw)
    except ValueError as exc:
        registry.send_to(websocket, "error", {"message": str(exc)})
        return

    idea_id = command["idea_id"]
    if command["event"] == JOIN_COMMAND:
        # Ack goes out first so the client sees it before any room traffic
        registry.send_to(websocket, "joined", {"ideaId": idea_id})
        registry.join_room(idea_id, websocket)
    else:
        registry.leave_room(idea_id, websocket)
        registry.send_to(websocket, "left", {"ideaId": idea_id})


@router.websocket("/ws")
async def collaboration_socket(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None, alias="userId"),
    user_name: Optional[str] = Query(None, alias="userName"),
    user_image: Optional[str] = Query(None, alias="userImage"),
) -> None:
    """One long-lived socket per browser tab; it may be in several rooms."""
    registry: RoomRegistry = websocket.app.state.room_registry
    await websocket.accept()

    user = RoomUser(user_id, user_name or None, user_image or None) if user_id else None
    registry.attach(websocket, user)
    logger.info("WebSocket connected (%s)", user_id or "anonymous")

    try:
        while True:
            raw = await websocket.receive_text()
            _handle_command(registry, websocket, raw)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.warning("WebSocket receive failed for %s: %s", user_id or "anonymous", exc)
    finally:
        left = registry.disconnect(websocket)
        logger.info(
            "WebSocket disconnected (%s), left %d room(s)", user_id or "anonymous", len(left)
        )
