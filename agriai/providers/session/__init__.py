"""Session registry adapters for push notifications."""

from agriai.providers.session.memory_session_registry import InMemorySessionRegistry

__all__ = ["InMemorySessionRegistry"]
