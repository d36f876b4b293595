"""Top-up order type definitions for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, TypedDict
from uuid import UUID


# Order status values matching the topup_orders.status column
OrderStatus = Literal["pending", "paid", "processing", "completed", "failed", "pending_manual"]

# Statuses the orchestrator will not leave on its own
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "pending_manual"})

# Statuses from which a fulfillment trigger takes the dispatch lease
LEASEABLE_STATUSES: tuple[str, ...] = ("paid",)

# Statuses an operator retry (force=True) may take the lease from
RETRYABLE_STATUSES: tuple[str, ...] = ("paid", "failed", "pending_manual")

# Statuses a callback or poll is allowed to overwrite
RECONCILABLE_STATUSES: tuple[str, ...] = ("pending", "paid", "processing")


class CardCode(TypedDict):
    """A delivered voucher code.

    Stored as part of the card_codes JSONB array.
    """

    code: str
    serial: str
    expire: str


class TopupOrder(TypedDict):
    """topup_orders table row representation."""

    id: UUID
    game_name: str
    package_name: str
    player_id: str
    server_id: str | None
    player_name: str | None
    amount: Decimal
    currency: str
    payment_method: str | None
    external_product_ref: str | None
    external_order_ref: str | None
    card_codes: list[CardCode] | None
    status: OrderStatus
    status_message: str | None
    created_at: datetime
    updated_at: datetime


class TopupOrderUpdate(TypedDict, total=False):
    """Columns the fulfillment core writes."""

    status: OrderStatus
    status_message: str
    external_product_ref: str
    external_order_ref: str
    card_codes: list[CardCode]
    updated_at: str


def is_terminal(status: str | None) -> bool:
    """Check whether a status is terminal for automation."""
    return status in TERMINAL_STATUSES


# Provider status vocabulary -> our status. Anything unlisted is still in flight.
PROVIDER_STATUS_MAP: dict[str, OrderStatus] = {
    "COMPLETED": "completed",
    "FAILED": "failed",
}


def map_provider_status(provider_status: str | None) -> OrderStatus:
    """Map a provider order status onto an order status.

    Shared by the orchestrator, the callback handler and the poller so all
    channels converge on the same result.
    """
    if not provider_status:
        return "processing"
    return PROVIDER_STATUS_MAP.get(provider_status.strip().upper(), "processing")
