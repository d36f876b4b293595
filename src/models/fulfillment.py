"""Provider call results and fulfillment outcomes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FulfillmentErrorKind(str, Enum):
    """Error taxonomy surfaced to admin-facing callers."""

    CONFIGURATION = "configuration"
    PROVIDER_REJECTION = "provider_rejection"
    TRANSPORT = "transport"
    RECONCILIATION_CONFLICT = "reconciliation_conflict"
    NOT_FOUND = "not_found"


@dataclass
class DeliveredItem:
    """A code delivered by a voucher purchase or completion callback."""

    code: str
    serial: str = ""
    expire: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> "DeliveredItem":
        """Build from either a bare code string or a {code, serial, expire} object."""
        if isinstance(raw, dict):
            return cls(
                code=str(raw.get("code", "")),
                serial=str(raw.get("serial") or ""),
                expire=str(raw.get("expire") or raw.get("expiry") or ""),
            )
        return cls(code=str(raw))

    def to_card_code(self) -> dict[str, str]:
        return {"code": self.code, "serial": self.serial, "expire": self.expire}


@dataclass
class ProviderResult:
    """Normalized response of any provider call.

    transport_error distinguishes "we don't know what happened" (network
    failure, unreadable body) from a well-formed rejection.
    """

    accepted: bool
    external_order_ref: str | None = None
    delivered_items: list[DeliveredItem] = field(default_factory=list)
    provider_status: str | None = None
    error_message: str | None = None
    transport_error: bool = False
    raw: dict[str, Any] | None = None


@dataclass
class FulfillmentOutcome:
    """Result of a fulfillment or reconciliation operation on one order."""

    order_id: str
    status: str | None
    message: str | None = None
    error_kind: FulfillmentErrorKind | None = None
    provider_message: str | None = None
    external_order_ref: str | None = None
    dispatched: bool = False
    changed: bool = False
    card_count: int = 0


@dataclass
class SweepResult:
    """Counts from one reconciliation sweep."""

    checked: int = 0
    updated: int = 0
    completed: int = 0
    failed: int = 0
    errors: int = 0
    skipped_reason: str | None = None
