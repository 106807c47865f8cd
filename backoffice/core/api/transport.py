"""HTTP transport for the remote back-office API.

`requests` is blocking, so each call runs in a worker thread and the event
loop stays free for other in-flight operations.
"""
from __future__ import annotations
import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import requests

from .exceptions import NetworkFailure

REQUEST_TIMEOUT = 10


@dataclass
class ApiResponse:
    """Status and decoded body of one HTTP exchange."""
    status_code: int
    payload: Any
    text: str = ""
    endpoint: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def data(self) -> Any:
        """Body with the ``{success, message, data}`` envelope removed."""
        if isinstance(self.payload, dict) and "data" in self.payload:
            return self.payload["data"]
        return self.payload

    @property
    def pagination(self) -> dict:
        """Paging block of list endpoints (`page`, `limit`, `total`, `totalPages`), or {}."""
        if isinstance(self.payload, dict) and isinstance(self.payload.get("pagination"), dict):
            return self.payload["pagination"]
        return {}

    @property
    def message(self) -> str:
        """Server-provided error message, falling back to the raw body."""
        if isinstance(self.payload, dict):
            for key in ("message", "error", "detail"):
                value = self.payload.get(key)
                if isinstance(value, str) and value:
                    return value
        return self.text or f"HTTP {self.status_code}"


class Transport(ABC):
    """Sends one HTTP request; never retries and never interprets status codes."""

    @abstractmethod
    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        token: Optional[str] = None,
    ) -> ApiResponse:
        ...


class RequestsTransport(Transport):
    """Transport backed by a shared `requests.Session`.

    Usage:
        transport = RequestsTransport("http://localhost:5000/api")
        response = await transport.send("GET", "/auth/me", token=access_token)
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or os.environ.get("BACKOFFICE_API_URL", "http://localhost:5000/api")).rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("Content-Type", "application/json")

    async def send(self, method, path, *, json=None, params=None, token=None):
        return await asyncio.to_thread(self._send_blocking, method, path, json, params, token)

    def _send_blocking(
        self, method: str, path: str, json: Optional[dict], params: Optional[dict], token: Optional[str]
    ) -> ApiResponse:
        url = f"{self.base_url}{path}"
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = self._session.request(
                method, url, json=json, params=params, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise NetworkFailure(str(exc), endpoint=path) from exc
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        return ApiResponse(status_code=resp.status_code, payload=payload, text=resp.text, endpoint=path)

    def close(self) -> None:
        self._session.close()
