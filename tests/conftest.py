"""Pytest shared fixtures: fake remote API, stores and session helpers."""
import asyncio
import pathlib
import sys
from types import SimpleNamespace
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from backoffice.core import audit
from backoffice.core.api.exceptions import NetworkFailure
from backoffice.core.api.transport import ApiResponse, Transport
from backoffice.core.credential_store import MemoryCredentialStore
from backoffice.core.session import SessionManager


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_real_http(monkeypatch, request):
    """Prevent unit tests from reaching a real API through requests."""
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _refuse)


@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Keep audit events of each test in its own directory."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "backoffice-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key")
    yield audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# Fake Remote API
# ─────────────────────────────────────────────────────────────────────────────
def user_payload(role: str = "admin", user_id: int = 1, status: Optional[str] = "active", **extra) -> dict:
    payload = {
        "id": user_id,
        "email": f"{role}{user_id}@shop.test",
        "fullName": f"{role.title()} {user_id}",
        "role": role,
    }
    if status is not None:
        payload["status"] = status
    payload.update(extra)
    return payload


def order_payload(order_id: int = 42, status: str = "pending", **extra) -> dict:
    payload = {
        "id": order_id,
        "status": status,
        "finalAmount": "129.90",
        "paymentStatus": "pending",
        "assignedStaffId": None,
        "notes": None,
        "staffNotes": None,
    }
    payload.update(extra)
    return payload


class FakeBackoffice(Transport):
    """In-process stand-in for the remote API.

    Records every call in `calls`; tokens are issued per login/refresh and
    can be revoked to simulate expiry.
    """

    def __init__(self):
        self.calls = []
        self.users = {}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.orders = {}
        self.forced = {}
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self._seq = 0

    # ── setup helpers ──
    def add_user(self, email: str, password: str, payload: dict) -> None:
        self.users[email] = (password, payload)

    def add_order(self, payload: dict) -> None:
        self.orders[str(payload["id"])] = dict(payload)

    def issue(self, user: dict) -> tuple:
        self._seq += 1
        access, refresh = f"access-{self._seq}", f"refresh-{self._seq}"
        self.access_tokens[access] = user
        self.refresh_tokens[refresh] = user
        return access, refresh

    def expire_access(self, token: Optional[str] = None) -> None:
        if token is None:
            self.access_tokens.clear()
        else:
            self.access_tokens.pop(token, None)

    def force(self, method: str, path: str, *statuses: tuple) -> None:
        """Queue canned (status, payload) answers for a route ahead of normal handling."""
        self.forced.setdefault((method, path), []).extend(statuses)

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c.method == method and c.path == path)

    # ── transport ──
    async def send(self, method, path, *, json=None, params=None, token=None):
        self.calls.append(SimpleNamespace(method=method, path=path, json=json, params=params, token=token))
        await asyncio.sleep(0)
        queued = self.forced.get((method, path))
        if queued:
            status, payload = queued.pop(0)
            return self._respond(status, payload, path)
        return await self._handle(method, path, json or {}, token, params or {})

    def _respond(self, status: int, payload, path: str) -> ApiResponse:
        if status < 400:
            body = {"success": True, "data": payload}
        else:
            body = {"success": False, "message": payload}
        return ApiResponse(status_code=status, payload=body, text=str(body), endpoint=path)

    def _list_orders(self, params: dict, path: str) -> ApiResponse:
        matching = [o for o in self.orders.values() if not params.get("status") or o["status"] == params["status"]]
        page, limit = int(params.get("page", 1)), int(params.get("limit", 20))
        chunk = matching[(page - 1) * limit:page * limit]
        body = {
            "success": True,
            "data": [dict(o) for o in chunk],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(matching),
                "totalPages": max(1, -(-len(matching) // limit)),
            },
        }
        return ApiResponse(status_code=200, payload=body, text=str(body), endpoint=path)

    async def _handle(self, method, path, body, token, params=None):
        if (method, path) == ("POST", "/auth/login"):
            entry = self.users.get(body.get("email"))
            if entry is None or entry[0] != body.get("password"):
                return self._respond(401, "Invalid email or password", path)
            access, refresh = self.issue(entry[1])
            return self._respond(200, {"user": entry[1], "accessToken": access, "refreshToken": refresh}, path)

        if (method, path) == ("POST", "/auth/refresh"):
            if self.refresh_gate is not None:
                await self.refresh_gate.wait()
            if self.refresh_error is not None:
                raise self.refresh_error
            user = self.refresh_tokens.pop(body.get("refreshToken"), None)
            if user is None:
                return self._respond(401, "Invalid refresh token", path)
            access, refresh = self.issue(user)
            return self._respond(200, {"accessToken": access, "refreshToken": refresh}, path)

        user = self.access_tokens.get(token)
        if user is None:
            return self._respond(401, "Token expired", path)

        if (method, path) == ("GET", "/auth/me"):
            return self._respond(200, user, path)
        if (method, path) == ("POST", "/auth/logout"):
            if self.logout_error is not None:
                raise self.logout_error
            self.access_tokens = {k: v for k, v in self.access_tokens.items() if v is not user}
            return self._respond(200, None, path)
        if (method, path) == ("PUT", "/auth/change-password"):
            email = user["email"]
            password, payload = self.users[email]
            if body.get("currentPassword") != password:
                return self._respond(400, "Current password is incorrect", path)
            self.users[email] = (body["newPassword"], payload)
            return self._respond(200, None, path)
        if (method, path) == ("GET", "/orders"):
            return self._list_orders(params or {}, path)

        parts = path.strip("/").split("/")
        if parts[0] == "orders" and len(parts) >= 2:
            order = self.orders.get(parts[1])
            if order is None:
                return self._respond(404, "Order not found", path)
            action = parts[2] if len(parts) > 2 else None
            if method == "GET" and action is None:
                return self._respond(200, dict(order), path)
            if method == "PUT" and action == "status":
                order["status"] = body["status"]
                if body.get("notes"):
                    order["notes"] = body["notes"]
            elif method == "POST" and action == "cancel":
                order["status"] = "cancelled"
                order["cancelReason"] = body["reason"]
            elif method == "PUT" and action == "assign":
                order["assignedStaffId"] = body["staffId"]
            elif method == "POST" and action == "notes":
                order["staffNotes"] = body["note"]
            else:
                return self._respond(404, "Not found", path)
            return self._respond(200, dict(order), path)

        raise AssertionError(f"Unexpected {method} {path}")


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def server():
    backend = FakeBackoffice()
    backend.add_user("admin1@shop.test", "admin-pass", user_payload("admin", 1))
    backend.add_user("staff2@shop.test", "staff-pass", user_payload("staff", 2))
    backend.add_user("customer3@shop.test", "customer-pass", user_payload("customer", 3))
    return backend


@pytest.fixture()
def store():
    return MemoryCredentialStore()


@pytest.fixture()
def manager(server, store):
    return SessionManager(server, store)


PASSWORDS = {
    "admin": ("admin1@shop.test", "admin-pass"),
    "staff": ("staff2@shop.test", "staff-pass"),
    "customer": ("customer3@shop.test", "customer-pass"),
}


async def _login_as(manager: SessionManager, role: str):
    email, password = PASSWORDS[role]
    return await manager.login(email, password)


@pytest.fixture()
def login_as():
    """Coroutine function logging a manager in as the seeded admin, staff or customer."""
    return _login_as


@pytest.fixture()
def payloads():
    return SimpleNamespace(user=user_payload, order=order_payload)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires a running API)"
    )
