"""WebSocket endpoint for document notifications.

The socket is registered with the :class:`ISessionRegistry` under a fresh
connection id and the caller's user id.  The notification worker pushes
``document_processed`` / ``document_failed`` messages through the registry;
this endpoint only keeps the connection open and unregisters it on
disconnect.

# ─── MESSAGE FORMAT ────────────────────────────────────────────────────
#
#   { "type": "document_processed",
#     "data": { "document_id": "...", "word_count": 812, ... },
#     "timestamp": "2025-01-01T00:00:00+00:00" }
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from agriai.interfaces.session_registry import ISessionRegistry
from agriai.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


async def websocket_notifications(websocket: WebSocket, user_id: str) -> None:
    """Hold a notification socket open for *user_id* until it disconnects."""
    sessions: ISessionRegistry = websocket.app.state.session_registry

    await websocket.accept()
    connection_id = uuid.uuid4().hex
    sessions.register(connection_id, websocket, user_id=user_id)
    _logger.info("websocket_connected", connection_id=connection_id, user_id=user_id)

    try:
        await websocket.send_json({"type": "connected", "data": {"connection_id": connection_id}})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        _logger.info("websocket_disconnected", connection_id=connection_id, user_id=user_id)
    finally:
        sessions.unregister(connection_id)
