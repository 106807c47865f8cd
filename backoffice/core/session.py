"""Session manager: login, logout, bootstrap validation and credential renewal.

Renewal is single-flight. The first caller that needs a fresh access token
starts one renewal task; every caller arriving while it runs awaits that same
task and gets the same credential or the same SessionExpired.

A renewal belongs to the session generation it started in. Login and
teardown start a new generation; a renewal that settles afterwards discards
its result instead of writing it.
"""
from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import jwt

from . import audit
from .api.client import ApiClient
from .api.exceptions import (
    BackofficeError,
    InvalidCredentials,
    InvalidPayload,
    NetworkFailure,
    RemoteRejected,
    RoleNotPermitted,
    SessionExpired,
)
from .api.transport import Transport
from .credential_store import CredentialStore
from .models import Credential, Identity
from .rbac import BACKOFFICE_ROLES, is_backoffice_identity

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"
ME_PATH = "/auth/me"
LOGOUT_PATH = "/auth/logout"
CHANGE_PASSWORD_PATH = "/auth/change-password"

MIN_PASSWORD_LENGTH = 6


def estimate_expiry(access_token: str) -> Optional[datetime]:
    """Read the `exp` claim of a JWT access token without verifying it.

    The estimate only informs callers; the server's 401 remains the signal
    that drives renewal. Opaque (non-JWT) tokens yield None.
    """
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def credential_from_payload(payload: dict, fallback_refresh_token: Optional[str] = None) -> Credential:
    """Build a Credential from a login or refresh response body."""
    if not isinstance(payload, dict):
        raise ValueError("Token response must be an object")
    access_token = payload.get("accessToken") or payload.get("access_token")
    refresh_token = payload.get("refreshToken") or payload.get("refresh_token") or fallback_refresh_token
    if not access_token or not refresh_token:
        raise ValueError("Token response is missing accessToken or refreshToken")
    return Credential(
        access_token=str(access_token),
        refresh_token=str(refresh_token),
        expires_at_estimate=estimate_expiry(str(access_token)),
    )


class SessionManager:
    """Owns the credential lifecycle of one client process.

    Usage:
        manager = SessionManager(RequestsTransport(api_url), FileCredentialStore(state_dir))
        identity = await manager.init()          # restores a persisted session or None
        identity = await manager.login("a@shop.test", "secret")
        await manager.logout()
    """

    def __init__(self, transport: Transport, store: CredentialStore, *, warn_on_logout_failure: bool = True):
        self.transport = transport
        self.store = store
        self.warn_on_logout_failure = warn_on_logout_failure
        self._credential: Optional[Credential] = None
        self._identity: Optional[Identity] = None
        self._renewal: Optional[asyncio.Task] = None
        self._generation = 0
        self._api = ApiClient(self)

    # ─────────────────────────────────────────────────────────────────────
    # State accessors
    # ─────────────────────────────────────────────────────────────────────
    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None and is_backoffice_identity(self._identity)

    @property
    def renewal_pending(self) -> bool:
        return self._renewal is not None

    def current_credential(self) -> Optional[Credential]:
        return self._credential

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────
    async def init(self) -> Optional[Identity]:
        """Process-start hook: restore and validate the persisted session."""
        return await self.check_session()

    def teardown(self) -> None:
        """Drop the credential and identity from memory and from the store."""
        self._start_generation()
        self._credential = None
        self._identity = None
        self.store.clear()

    def expire(self, reason: str) -> None:
        """Tear the session down after an irrecoverable authorization failure."""
        if self._credential is not None or self._identity is not None:
            logger.warning("Session cleared: %s", reason)
        self.teardown()

    def _start_generation(self) -> None:
        # A pending renewal keeps running but can no longer write.
        self._generation += 1
        self._renewal = None

    def _apply(self, credential: Credential, identity: Identity) -> None:
        self._start_generation()
        self.store.save_credential(credential)
        self.store.save_identity(identity)
        self._credential = credential
        self._identity = identity

    # ─────────────────────────────────────────────────────────────────────
    # Operations
    # ─────────────────────────────────────────────────────────────────────
    async def login(self, email: str, password: str) -> Identity:
        """Authenticate against the remote API and persist the session.

        Raises:
            InvalidCredentials: Server answered 401/403, or the account is not active
            RoleNotPermitted: Login succeeded but the role is not Admin/Staff
            RemoteRejected: Any other HTTP error or a malformed response
            NetworkFailure: Transport failure
        """
        resp = await self._api.send_unauthenticated("POST", LOGIN_PATH, json={"email": email, "password": password})
        if resp.status_code in (401, 403):
            audit.safe_log_event("login", email, actor=email, details={"status": resp.status_code}, success=False)
            raise InvalidCredentials(resp.message)
        if not resp.ok:
            raise RemoteRejected(resp.status_code, resp.message, LOGIN_PATH)

        data = resp.data or {}
        try:
            identity = Identity.from_payload(data.get("identity") or data.get("user"))
            credential = credential_from_payload(data)
        except (AttributeError, ValueError) as exc:
            raise RemoteRejected(resp.status_code, f"Malformed login response: {exc}", LOGIN_PATH)

        if identity.role not in BACKOFFICE_ROLES:
            logger.info("Rejected back-office login for %s with role %s", identity.email, identity.role.value)
            audit.safe_log_event("login", email, actor=email, details={"role": identity.role.value}, success=False)
            raise RoleNotPermitted(identity.role.value)
        if not identity.is_active:
            raise InvalidCredentials(f"Account is {identity.status.value}")

        self._apply(credential, identity)
        logger.info("Logged in as %s (%s)", identity.email, identity.role.value)
        audit.safe_log_event("login", email, actor=email, details={"role": identity.role.value})
        return identity

    async def logout(self) -> bool:
        """Invalidate the session remotely (best effort) and always clear it locally.

        Returns:
            True if the server confirmed the logout, False otherwise
        """
        identity = self._identity
        confirmed = False
        if self._credential is not None:
            try:
                await self._api.post(LOGOUT_PATH)
                confirmed = True
            except BackofficeError as exc:
                log = logger.warning if self.warn_on_logout_failure else logger.debug
                log("Server did not confirm logout; local session cleared anyway: %s", exc)
        self.teardown()
        if identity is not None:
            audit.safe_log_event("logout", identity.email, actor=identity.email,
                                 details={"server_confirmed": confirmed})
        return confirmed

    async def change_password(self, current_password: str, new_password: str) -> None:
        """Change the password of the logged-in account; the session stays valid.

        Raises:
            InvalidPayload: Missing current password or new password too short
            SessionExpired: No session, or it could not be renewed
            RemoteRejected: Server refused the change (e.g. wrong current password)
        """
        if not current_password:
            raise InvalidPayload("Current password is required")
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise InvalidPayload(f"New password must have at least {MIN_PASSWORD_LENGTH} characters")

        await self._api.put(
            CHANGE_PASSWORD_PATH,
            json={"currentPassword": current_password, "newPassword": new_password},
        )
        actor = self._identity.email if self._identity is not None else "unknown"
        logger.info("Password changed for %s", actor)
        audit.safe_log_event("password_change", actor, actor=actor)

    async def check_session(self) -> Optional[Identity]:
        """Validate the persisted credential against the server.

        Never raises: any failure clears the store and yields None.
        """
        credential = self.store.load_credential()
        if credential is None:
            self._credential = None
            self._identity = None
            return None

        cached = self.store.load_identity()
        if cached is not None:
            logger.debug("Re-validating persisted session of %s", cached.email)

        self._credential = credential
        self._identity = None
        try:
            resp = await self._api.get(ME_PATH)
            identity = Identity.from_payload(resp.data)
        except Exception as exc:
            logger.info("Persisted session is no longer valid: %s", exc)
            self.teardown()
            return None

        if not is_backoffice_identity(identity):
            logger.info("Persisted session of %s is not usable (role=%s, status=%s)",
                        identity.email, identity.role.value, identity.status.value)
            self.teardown()
            return None

        self._identity = identity
        self.store.save_identity(identity)
        return identity

    async def renew(self, rejected_token: Optional[str] = None) -> Credential:
        """Obtain a fresh credential, sharing one network call among concurrent callers.

        Args:
            rejected_token: Access token the server just rejected. If the session
                already holds a different token, it was rotated meanwhile and is
                returned without another renewal.

        A caller cancelling its wait only abandons the wait: the renewal itself
        runs to completion, since the server rotates the refresh token as soon
        as it answers.

        Raises:
            SessionExpired: Renewal failed (the session has been cleared), or the
                session was logged out or replaced while the renewal was in flight
        """
        current = self._credential
        if rejected_token is not None and current is not None and current.access_token != rejected_token:
            return current

        if self._renewal is None:
            if current is None:
                raise SessionExpired("No credential to renew - log in again")
            logger.info("Renewing access token")
            self._renewal = asyncio.ensure_future(self._run_renewal(current, self._generation))
            self._renewal.add_done_callback(_retrieve_outcome)

        return await asyncio.shield(self._renewal)

    def _superseded(self, generation: int) -> bool:
        if self._generation == generation:
            return False
        logger.info("Discarding renewal result: session changed while it was in flight")
        return True

    async def _run_renewal(self, credential: Credential, generation: int) -> Credential:
        try:
            try:
                resp = await self._api.send_unauthenticated(
                    "POST", REFRESH_PATH, json={"refreshToken": credential.refresh_token}
                )
            except NetworkFailure as exc:
                if not self._superseded(generation):
                    self.expire(f"renewal failed: {exc}")
                raise SessionExpired("Session expired - renewal unreachable") from exc

            if self._superseded(generation):
                raise SessionExpired("Session ended while the credential was being renewed")

            if not resp.ok:
                self.expire(f"refresh token rejected ({resp.status_code})")
                raise SessionExpired("Session expired - log in again")

            data = resp.data or {}
            try:
                renewed = credential_from_payload(data, fallback_refresh_token=credential.refresh_token)
                identity_payload = data.get("identity") or data.get("user")
                identity = Identity.from_payload(identity_payload) if identity_payload else self._identity
            except (AttributeError, ValueError) as exc:
                self.expire(f"malformed renewal response: {exc}")
                raise SessionExpired("Session expired - log in again") from exc

            if identity_payload and not is_backoffice_identity(identity):
                self.expire("renewed identity is not permitted in the back-office")
                raise SessionExpired("Session expired - log in again")

            self.store.save_credential(renewed)
            self._credential = renewed
            if identity_payload:
                self.store.save_identity(identity)
                self._identity = identity
            logger.info("Access token renewed")
            return renewed
        finally:
            if self._renewal is asyncio.current_task():
                self._renewal = None


def _retrieve_outcome(task: asyncio.Task) -> None:
    # Renewals may settle with no waiter left; mark their exception as seen.
    if not task.cancelled():
        task.exception()
