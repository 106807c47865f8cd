"""Domain types shared by the session manager and the order workflow."""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BANNED = "banned"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


def _pick(payload: dict, *keys: str, default: Any = None) -> Any:
    """Return the first present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _parse_enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown {field_name}: {value!r}")


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair proving an authenticated session."""
    access_token: str
    refresh_token: str
    expires_at_estimate: Optional[datetime] = None

    def to_record(self) -> dict:
        record = {"accessToken": self.access_token, "refreshToken": self.refresh_token}
        if self.expires_at_estimate is not None:
            record["expiresAt"] = self.expires_at_estimate.isoformat()
        return record

    @classmethod
    def from_record(cls, record: dict) -> "Credential":
        access_token = _pick(record, "accessToken", "access_token")
        refresh_token = _pick(record, "refreshToken", "refresh_token")
        if not access_token or not refresh_token:
            raise ValueError("Credential record requires both accessToken and refreshToken")
        expires_at = record.get("expiresAt")
        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at_estimate=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass(frozen=True)
class Identity:
    """Authenticated user profile as confirmed by the server."""
    id: str
    email: str
    full_name: str
    role: Role
    status: AccountStatus = AccountStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    @classmethod
    def from_payload(cls, payload: dict) -> "Identity":
        """Build an Identity from the remote API user representation.

        The `/auth/me` endpoint omits `status` for accounts it still serves,
        so a missing status is read as active.
        """
        if not isinstance(payload, dict):
            raise ValueError("Identity payload must be an object")
        user_id = _pick(payload, "id", "userId", "user_id")
        if user_id is None:
            raise ValueError("Identity payload is missing 'id'")
        return cls(
            id=str(user_id),
            email=str(_pick(payload, "email", default="")),
            full_name=str(_pick(payload, "fullName", "full_name", default="")),
            role=_parse_enum(Role, _pick(payload, "role", default=""), "role"),
            status=_parse_enum(AccountStatus, _pick(payload, "status", default="active"), "status"),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "fullName": self.full_name,
            "role": self.role.value,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Order:
    """Client-side view of a server-owned order."""
    id: str
    status: OrderStatus
    final_amount: Decimal = Decimal("0")
    payment_status: str = ""
    assigned_staff_id: Optional[str] = None
    notes: Optional[str] = None
    staff_notes: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "Order":
        if not isinstance(payload, dict):
            raise ValueError("Order payload must be an object")
        order_id = _pick(payload, "id", "orderId", "order_id")
        if order_id is None:
            raise ValueError("Order payload is missing 'id'")
        amount = _pick(payload, "finalAmount", "final_amount", default="0")
        try:
            final_amount = Decimal(str(amount))
        except InvalidOperation:
            raise ValueError(f"Invalid finalAmount: {amount!r}")
        staff_id = _pick(payload, "assignedStaffId", "assigned_staff_id", "processedBy", "processed_by")
        return cls(
            id=str(order_id),
            status=_parse_enum(OrderStatus, _pick(payload, "status", default=""), "order status"),
            final_amount=final_amount,
            payment_status=str(_pick(payload, "paymentStatus", "payment_status", default="")),
            assigned_staff_id=str(staff_id) if staff_id is not None else None,
            notes=_pick(payload, "notes"),
            staff_notes=_pick(payload, "staffNotes", "staff_notes"),
        )


@dataclass(frozen=True)
class OrderPage:
    """One page of an order listing."""
    orders: List[Order]
    page: int = 1
    limit: int = 0
    total: int = 0
    total_pages: int = 1
