"""Authorized request pipeline for the remote back-office API.

Every call reads the current access token from the session manager, and a
401 answer triggers one renewal and one retry of that same call.
"""
from __future__ import annotations
import logging
from typing import TYPE_CHECKING, Optional

from .exceptions import RemoteRejected, SessionExpired
from .transport import ApiResponse, Transport

if TYPE_CHECKING:
    from ..session import SessionManager

logger = logging.getLogger(__name__)


class ApiClient:
    """HTTP client that keeps calls authorized across access-token expiry.

    Features:
    - Bearer token attached per call from the session manager
    - Single renew-and-retry on 401, scoped to the individual call
    - Typed errors: SessionExpired, RemoteRejected, NetworkFailure

    Usage:
        client = ApiClient(session_manager)
        response = await client.put("/orders/42/status", json={"status": "shipped"})
        order = response.data
    """

    def __init__(self, session: "SessionManager", transport: Optional[Transport] = None):
        self.session = session
        self.transport = transport or session.transport

    async def request(
        self, method: str, path: str, json: Optional[dict] = None, params: Optional[dict] = None
    ) -> ApiResponse:
        """Execute an authorized request.

        Args:
            method: HTTP method
            path: API endpoint path (e.g., "/orders/42/status")
            json: JSON payload
            params: Query string parameters

        Returns:
            Response of the successful attempt

        Raises:
            SessionExpired: No credential, renewal failed, or retry rejected again
            RemoteRejected: Any other HTTP error (never retried)
            NetworkFailure: Transport failure (never retried)
        """
        credential = self.session.current_credential()
        if credential is None:
            raise SessionExpired("No active session - log in first")

        retried = False
        while True:
            token = credential.access_token
            resp = await self.transport.send(method, path, json=json, params=params, token=token)
            if resp.status_code != 401:
                break
            if retried:
                logger.warning("%s %s rejected again after credential renewal", method, path)
                if self.session.current_credential() is credential:
                    self.session.expire("access token rejected after renewal")
                raise SessionExpired("Session expired - log in again")
            retried = True
            logger.debug("%s %s rejected with 401; renewing credential", method, path)
            credential = await self.session.renew(rejected_token=token)

        if not resp.ok:
            raise RemoteRejected(resp.status_code, resp.message, path)
        return resp

    async def send_unauthenticated(self, method: str, path: str, json: Optional[dict] = None) -> ApiResponse:
        """Dispatch without a bearer token and without renewal (login, refresh).

        The response is returned as is; callers interpret its status code.
        """
        return await self.transport.send(method, path, json=json)

    async def get(self, path: str, params: Optional[dict] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Optional[dict] = None) -> ApiResponse:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[dict] = None) -> ApiResponse:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> ApiResponse:
        return await self.request("DELETE", path)
