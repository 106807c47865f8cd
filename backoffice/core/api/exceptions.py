"""Typed exceptions for session, authorization and workflow failures."""
from typing import Optional


class BackofficeError(Exception):
    """Base exception for all back-office core operations."""
    pass


class InvalidCredentials(BackofficeError):
    """Login rejected by the server (wrong email/password or locked account)."""
    pass


class RoleNotPermitted(BackofficeError):
    """Authenticated identity has a role that may not use the back-office."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Role '{role}' is not permitted to use the back-office")


class SessionExpired(BackofficeError):
    """Credential could not be renewed; the caller must log in again."""
    pass


class Unauthenticated(BackofficeError):
    """No authenticated identity is available for the operation."""
    pass


class Forbidden(BackofficeError):
    """Authenticated identity lacks the role required for the operation.

    Attributes:
        role: Role of the caller
        required_roles: Roles that would have been accepted
    """

    def __init__(self, role: str, required_roles):
        self.role = role
        self.required_roles = sorted(required_roles)
        super().__init__(f"Required role: {', '.join(self.required_roles)} (caller is '{role}')")


class IllegalTransition(BackofficeError):
    """Requested order status change is not in the transition table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")


class InvalidPayload(BackofficeError):
    """Side-payload for an order operation is missing or malformed."""
    pass


class RemoteRejected(BackofficeError):
    """Non-authorization HTTP error returned by the remote API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str = ""):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class NetworkFailure(BackofficeError):
    """Transport-level failure (connection refused, timeout, DNS...)."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        self.endpoint = endpoint
        super().__init__(f"{endpoint}: {message}" if endpoint else message)
