"""In-memory session registry for push notifications.

Holds ``connection id -> (transport, user id)`` for the lifetime of the
process.  One instance is built in ``main.py`` and injected into the
WebSocket endpoint (which registers sockets) and the queue manager's
notification worker (which pushes through it).

Delivery is best effort: a transport that raises is dropped from the
registry and the message is not retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from agriai.interfaces.session_registry import ISessionRegistry, MessageTransport

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class _Session:
    transport: MessageTransport
    user_id: str | None


class InMemorySessionRegistry(ISessionRegistry):
    """Dict-backed :class:`ISessionRegistry`."""

    def __init__(self) -> None:
        self._sessions: dict[str, _Session] = {}

    def register(
        self,
        connection_id: str,
        transport: MessageTransport,
        user_id: str | None = None,
    ) -> None:
        self._sessions[connection_id] = _Session(transport=transport, user_id=user_id)
        logger.debug("session_registered", connection_id=connection_id, user_id=user_id)

    def unregister(self, connection_id: str) -> None:
        if self._sessions.pop(connection_id, None) is not None:
            logger.debug("session_unregistered", connection_id=connection_id)

    async def send(self, connection_id: str, message: dict[str, Any]) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        try:
            await session.transport.send_json(message)
        except Exception as exc:  # noqa: BLE001 - any transport failure drops the session
            logger.warning(
                "session_send_failed",
                connection_id=connection_id,
                error=str(exc),
            )
            self.unregister(connection_id)
            return False
        return True

    async def broadcast(self, message: dict[str, Any], user_id: str | None = None) -> int:
        targets = [
            cid
            for cid, session in list(self._sessions.items())
            if user_id is None or session.user_id == user_id
        ]
        delivered = 0
        for connection_id in targets:
            if await self.send(connection_id, message):
                delivered += 1
        return delivered

    def connection_count(self) -> int:
        return len(self._sessions)
