"""Remote back-office API access.

Architecture:
- transport.py: one HTTP exchange (requests, run off the event loop)
- client.py: authorized pipeline with renew-once-and-retry on 401
- exceptions.py: typed failures shared by the whole core

Usage:
    from backoffice.core.api import ApiClient, RequestsTransport

    transport = RequestsTransport("http://localhost:5000/api")
    client = ApiClient(session_manager, transport)
    response = await client.get("/orders/42")
"""
from .client import ApiClient
from .exceptions import (
    BackofficeError,
    InvalidCredentials,
    RoleNotPermitted,
    SessionExpired,
    Unauthenticated,
    Forbidden,
    IllegalTransition,
    InvalidPayload,
    RemoteRejected,
    NetworkFailure,
)
from .transport import (
    ApiResponse,
    Transport,
    RequestsTransport,
    REQUEST_TIMEOUT,
)

__all__ = [
    # Client
    "ApiClient",

    # Transport
    "ApiResponse",
    "Transport",
    "RequestsTransport",
    "REQUEST_TIMEOUT",

    # Exceptions
    "BackofficeError",
    "InvalidCredentials",
    "RoleNotPermitted",
    "SessionExpired",
    "Unauthenticated",
    "Forbidden",
    "IllegalTransition",
    "InvalidPayload",
    "RemoteRejected",
    "NetworkFailure",
]
