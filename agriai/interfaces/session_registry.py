"""Abstract base class for the push-notification session registry.

Connected clients (WebSocket sessions) are registered by connection id.
The notification worker pushes job outcomes through this registry; nothing
else in the pipeline knows about transports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol


class MessageTransport(Protocol):
    """Anything that can push a JSON-serialisable dict (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


# Concrete implementations:
#   InMemorySessionRegistry -- dict keyed by connection id
# Located in: agriai/providers/session/
class ISessionRegistry(ABC):
    """Keyed store of live connections with best-effort delivery."""

    @abstractmethod
    def register(
        self,
        connection_id: str,
        transport: MessageTransport,
        user_id: str | None = None,
    ) -> None:
        """Add a connection, optionally owned by *user_id*."""

    @abstractmethod
    def unregister(self, connection_id: str) -> None:
        """Remove a connection. Unknown ids are ignored."""

    @abstractmethod
    async def send(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Push *message* to one connection.

        Returns ``False`` when the connection is unknown or the push fails;
        failures are not retried.
        """

    @abstractmethod
    async def broadcast(self, message: dict[str, Any], user_id: str | None = None) -> int:
        """Push *message* to every connection, or only *user_id*'s ones.

        Returns the number of successful deliveries.
        """

    @abstractmethod
    def connection_count(self) -> int:
        """Return how many connections are registered."""
