"""API dependencies for dependency injection."""

import json
import logging
from typing import List

from fastapi import Depends, HTTPException, WebSocket
from fastapi.requests import HTTPConnection

from ..core.session import SessionManager
from ..errors import NoActiveSession

logger = logging.getLogger(__name__)


class ConnectionManager:
    """WebSocket connection manager for real-time updates."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        for connection in list(self.active_connections):
            try:
                await connection.send_text(json.dumps(message))
            except Exception as exc:
                logger.debug("Dropping websocket after send failure: %s", exc)
                self.disconnect(connection)

    async def send_personal(self, message: dict, websocket: WebSocket):
        """Send message to specific client."""
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as exc:
            logger.debug("Dropping websocket after send failure: %s", exc)
            self.disconnect(websocket)


def get_session_manager(request: HTTPConnection) -> SessionManager:
    """Session manager built by the application lifespan."""
    return request.app.state.sessions


def get_connection_manager(request: HTTPConnection) -> ConnectionManager:
    return request.app.state.connections


def require_session(
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionManager:
    """Session manager with a signed-in user, 401 otherwise."""
    try:
        sessions.sync
    except NoActiveSession as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    return sessions
