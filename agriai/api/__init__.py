"""AgriAI API layer -- routes, schemas, WebSocket, and middleware."""

from agriai.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from agriai.api.routes import router
from agriai.api.schemas import (
    AskRequest,
    CancelJobResponse,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SubmitJobRequest,
    SubmitJobResponse,
)
from agriai.api.websocket import websocket_notifications

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "websocket_notifications",
    "AskRequest",
    "CancelJobResponse",
    "ErrorResponse",
    "HealthResponse",
    "SearchRequest",
    "SubmitJobRequest",
    "SubmitJobResponse",
]
