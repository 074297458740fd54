"""Websocket endpoint delivering notifications to connected users.

Clients authenticate with ``?token=`` and may send ``ping`` to receive
``pong``. Anything pushed while a client was offline stays in the inbox; a
reconnecting client re-reads ``GET /inbox``.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

router = APIRouter(prefix="/ws", tags=["realtime"])

_POLICY_VIOLATION = 1008
_TRY_AGAIN_LATER = 1013


@router.websocket("/notifications")
async def notifications_socket(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    state = websocket.app.state
    registry = getattr(state, "actor_registry", None)
    connections = getattr(state, "connections", None)
    if connections is None or registry is None:
        await websocket.close(code=_TRY_AGAIN_LATER, reason="Realtime delivery unavailable")
        return

    actor = registry.resolve_token(token) if token else None
    if actor is None:
        await websocket.close(code=_POLICY_VIOLATION, reason="Authentication required")
        return

    if not await connections.connect(websocket, actor.user_id):
        return
    try:
        inbox_service = getattr(state, "inbox_service", None)
        if inbox_service is not None:
            unread = await inbox_service.unread_count(actor.user_id)
            await websocket.send_json({"type": "count_update", "unread_count": unread})
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await connections.disconnect(websocket, actor.user_id)
