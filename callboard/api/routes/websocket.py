"""WebSocket routes for real-time dashboard updates."""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ...core.session import SessionManager
from ..deps import ConnectionManager, get_connection_manager, get_session_manager
from .establishments import dashboard_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def current_state(sessions: SessionManager) -> dict:
    """Snapshot of every cached establishment."""
    cached = [sessions.cache.get(eid) for eid in sessions.cache.ids()]
    return {
        "establishments": [dashboard_snapshot(e) for e in cached if e is not None],
    }


def broadcaster(sessions: SessionManager, manager: ConnectionManager):
    """Refresh listener that pushes the refreshed dashboard to every client."""

    async def broadcast_refresh(establishment_id: str):
        establishment = sessions.cache.get(establishment_id)
        if establishment is None:
            return
        await manager.broadcast(
            {"type": "state_update", "data": dashboard_snapshot(establishment)}
        )

    return broadcast_refresh


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    manager: ConnectionManager = Depends(get_connection_manager),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Main WebSocket endpoint for real-time updates."""
    await manager.connect(websocket)

    try:
        await manager.send_personal(
            {"type": "initial_state", "data": current_state(sessions)}, websocket
        )

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await manager.send_personal(
                    {"type": "error", "message": "Invalid JSON"}, websocket
                )
                continue

            await handle_client_message(message, websocket, manager, sessions)

    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket error")
        manager.disconnect(websocket)


async def handle_client_message(
    message: dict,
    websocket: WebSocket,
    manager: ConnectionManager,
    sessions: SessionManager,
):
    """Handle incoming WebSocket messages from clients."""
    msg_type = message.get("type")

    if msg_type == "ping":
        await manager.send_personal({"type": "pong"}, websocket)

    elif msg_type == "request_state":
        await manager.send_personal(
            {"type": "state_update_all", "data": current_state(sessions)}, websocket
        )

    elif msg_type == "refresh":
        # Pull-to-refresh from the dashboard
        establishment_id = message.get("establishment_id")
        if sessions.current_user is None or not establishment_id:
            await manager.send_personal(
                {"type": "error", "message": "Nothing to refresh"}, websocket
            )
            return
        if not sessions.sync.is_tracked(establishment_id):
            await manager.send_personal(
                {"type": "error", "message": f"Establishment {establishment_id} is not loaded"},
                websocket,
            )
            return
        outcome = await sessions.sync.refresh(establishment_id)
        await manager.send_personal(
            {"type": "refreshed", "establishment_id": establishment_id, "outcome": outcome.value},
            websocket,
        )

    else:
        await manager.send_personal(
            {"type": "error", "message": f"Unknown message type: {msg_type}"}, websocket
        )
