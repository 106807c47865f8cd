"""Order workflow engine.

The transition table below is the single source of truth for which order
status moves are legal, who may perform them and what payload they need.
Menus and action buttons are projections of it (`available_transitions`).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from . import audit
from .api.client import ApiClient
from .api.exceptions import IllegalTransition, InvalidPayload, RemoteRejected
from .models import Identity, Order, OrderPage, OrderStatus, Role
from .rbac import ADMIN_ONLY, BACKOFFICE_ROLES, require_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionRule:
    roles: FrozenSet[Role]
    requires_reason: bool = False


@dataclass(frozen=True)
class TransitionPayload:
    """Side-payload of a status change: `reason` for cancellation, `note` otherwise."""
    note: Optional[str] = None
    reason: Optional[str] = None


_CANCEL = TransitionRule(roles=BACKOFFICE_ROLES, requires_reason=True)

TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], TransitionRule] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): TransitionRule(BACKOFFICE_ROLES),
    (OrderStatus.CONFIRMED, OrderStatus.PROCESSING): TransitionRule(BACKOFFICE_ROLES),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED): TransitionRule(BACKOFFICE_ROLES),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED): TransitionRule(BACKOFFICE_ROLES),
    (OrderStatus.DELIVERED, OrderStatus.RETURNED): TransitionRule(ADMIN_ONLY),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): _CANCEL,
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): _CANCEL,
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED): _CANCEL,
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED): _CANCEL,
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED})

DEFAULT_PAGE_SIZE = 20


def allowed_next(status: OrderStatus) -> FrozenSet[OrderStatus]:
    """Statuses reachable from `status` in one step."""
    return frozenset(target for (source, target) in TRANSITIONS if source is status)


def allowed_roles(source: OrderStatus, target: OrderStatus) -> FrozenSet[Role]:
    """Roles permitted to perform source -> target (empty when illegal)."""
    rule = TRANSITIONS.get((source, target))
    return rule.roles if rule else frozenset()


def available_transitions(status: OrderStatus, role: Role) -> list[OrderStatus]:
    """Targets a given role may pick for an order in `status`, in lifecycle order."""
    order = list(OrderStatus)
    targets = [t for t in allowed_next(status) if role in allowed_roles(status, t)]
    return sorted(targets, key=order.index)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    if not isinstance(text, str):
        raise InvalidPayload("Note and reason must be strings")
    text = text.strip()
    return text or None


class OrderWorkflow:
    """Validates order operations locally, then issues them through the API client.

    Usage:
        workflow = OrderWorkflow(ApiClient(session_manager))
        order = await workflow.get_order("42")
        order = await workflow.request_transition(order, OrderStatus.SHIPPED, session_manager.identity)
    """

    def __init__(self, client: ApiClient):
        self.client = client

    @staticmethod
    def _order_from(resp, endpoint: str) -> Order:
        try:
            return Order.from_payload(resp.data)
        except ValueError as exc:
            raise RemoteRejected(resp.status_code, f"Malformed order response: {exc}", endpoint)

    async def get_order(self, order_id: str) -> Order:
        """Fetch the server's current representation of an order."""
        path = f"/orders/{order_id}"
        return self._order_from(await self.client.get(path), path)

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        """Fetch one page of orders, optionally filtered by status.

        Raises:
            InvalidPayload: Unknown status filter or non-positive page/limit
            RemoteRejected: Server refused the listing or answered with a malformed page
        """
        if page < 1 or limit < 1:
            raise InvalidPayload("Page and limit must be positive")
        params = {"page": page, "limit": limit}
        if status is not None:
            try:
                params["status"] = OrderStatus(status).value
            except ValueError:
                raise InvalidPayload(f"Unknown order status: {status!r}")

        path = "/orders"
        resp = await self.client.get(path, params=params)
        if not isinstance(resp.data, list):
            raise RemoteRejected(resp.status_code, "Malformed order listing: expected a list", path)
        try:
            orders = [Order.from_payload(item) for item in resp.data]
        except ValueError as exc:
            raise RemoteRejected(resp.status_code, f"Malformed order listing: {exc}", path)

        paging = resp.pagination
        return OrderPage(
            orders=orders,
            page=int(paging.get("page", page)),
            limit=int(paging.get("limit", limit)),
            total=int(paging.get("total", len(orders))),
            total_pages=int(paging.get("totalPages", paging.get("total_pages", 1))),
        )

    async def request_transition(
        self,
        order: Order,
        target: OrderStatus,
        identity: Optional[Identity],
        payload: Optional[TransitionPayload] = None,
    ) -> Order:
        """Move an order to `target` status.

        Checks run in order and all happen before any network call:
        legal transition, caller role, payload shape.

        Returns:
            The updated order as returned by the server

        Raises:
            IllegalTransition: target not reachable from the current status
            Unauthenticated / Forbidden: caller may not perform this move
            InvalidPayload: cancellation without a non-empty reason
            RemoteRejected: server refused the change (never retried)
        """
        try:
            target = OrderStatus(target)
        except ValueError:
            raise IllegalTransition(order.status.value, str(target))
        payload = payload or TransitionPayload()

        rule = TRANSITIONS.get((order.status, target))
        if rule is None:
            raise IllegalTransition(order.status.value, target.value)

        require_role(identity, rule.roles)

        if rule.requires_reason:
            reason = _clean(payload.reason)
            if reason is None:
                raise InvalidPayload("Cancelling an order requires a reason")
            path = f"/orders/{order.id}/cancel"
            resp = await self.client.post(path, json={"reason": reason})
            event, details = "order_cancel", {"from": order.status.value, "reason": reason}
        else:
            note = _clean(payload.note)
            body = {"status": target.value}
            if note is not None:
                body["notes"] = note
            path = f"/orders/{order.id}/status"
            resp = await self.client.put(path, json=body)
            event, details = "order_transition", {"from": order.status.value, "to": target.value}

        updated = self._order_from(resp, path)
        if updated.status is not target:
            logger.warning("Order %s: requested %s, server reports %s",
                           order.id, target.value, updated.status.value)
        audit.safe_log_event(event, updated.id, actor=identity.email, details=details)
        return updated

    async def assign_staff(self, order: Order, staff_id: str, identity: Optional[Identity]) -> Order:
        """Assign a staff member to an order (Admin only); status is left untouched."""
        require_role(identity, ADMIN_ONLY)
        staff_id = _clean(str(staff_id) if staff_id is not None else None)
        if staff_id is None:
            raise InvalidPayload("Staff id is required")

        path = f"/orders/{order.id}/assign"
        updated = self._order_from(await self.client.put(path, json={"staffId": staff_id}), path)
        audit.safe_log_event("order_assign", updated.id, actor=identity.email, details={"staff_id": staff_id})
        return updated

    async def add_note(self, order: Order, note: str, identity: Optional[Identity]) -> Order:
        """Attach an internal staff note to an order."""
        require_role(identity, BACKOFFICE_ROLES)
        note = _clean(note)
        if note is None:
            raise InvalidPayload("Note must not be empty")

        path = f"/orders/{order.id}/notes"
        updated = self._order_from(await self.client.post(path, json={"note": note}), path)
        audit.safe_log_event("order_note", updated.id, actor=identity.email)
        return updated
