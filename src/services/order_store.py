"""Persistence for top-up orders with conditional (lease-style) updates."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from supabase import Client

from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)

ORDERS_TABLE = "topup_orders"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderStore:
    """Reads and writes topup_orders.

    Every state-changing write is conditional on the current status, so two
    concurrent writers cannot both win. PostgREST applies the filter and the
    update as a single statement.
    """

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def get_order(self, order_id: UUID | str) -> dict[str, Any] | None:
        """Get an order by ID.

        Args:
            order_id: The order's UUID.

        Returns:
            dict | None: The order row or None if not found.
        """
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("id", str(order_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def find_by_external_order_ref(self, external_order_ref: str) -> dict[str, Any] | None:
        """Get an order by the provider's order id."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("external_order_ref", external_order_ref)
            .limit(1)
            .execute()
        )
        return response.data[0] if response and response.data else None

    async def update_if_status(
        self,
        order_id: UUID | str,
        data: dict[str, Any],
        statuses: Iterable[str],
    ) -> dict[str, Any] | None:
        """Update an order only while its status is one of `statuses`.

        Returns:
            dict | None: The updated row, or None if the condition did not hold.
        """
        payload = {**data, "updated_at": _now_iso()}
        response = (
            self.client.table(ORDERS_TABLE)
            .update(payload)
            .eq("id", str(order_id))
            .in_("status", list(statuses))
            .execute()
        )
        return response.data[0] if response and response.data else None

    async def reclaim_stale_processing(
        self,
        order_id: UUID | str,
        data: dict[str, Any],
        stale_before: datetime,
    ) -> dict[str, Any] | None:
        """Take over a processing order that never got a provider reference.

        Only matches rows untouched since `stale_before`, so an attempt that
        is still in flight cannot be taken over.
        """
        payload = {**data, "updated_at": _now_iso()}
        response = (
            self.client.table(ORDERS_TABLE)
            .update(payload)
            .eq("id", str(order_id))
            .eq("status", "processing")
            .is_("external_order_ref", "null")
            .lt("updated_at", stale_before.isoformat())
            .execute()
        )
        return response.data[0] if response and response.data else None

    async def set_external_order_ref_if_missing(
        self,
        order_id: UUID | str,
        external_order_ref: str,
    ) -> dict[str, Any] | None:
        """Record the provider order id without touching status."""
        response = (
            self.client.table(ORDERS_TABLE)
            .update({"external_order_ref": external_order_ref, "updated_at": _now_iso()})
            .eq("id", str(order_id))
            .is_("external_order_ref", "null")
            .execute()
        )
        return response.data[0] if response and response.data else None

    async def list_stale_processing(self, stale_before: datetime, limit: int) -> list[dict[str, Any]]:
        """Processing orders with a provider reference, oldest first."""
        response = (
            self.client.table(ORDERS_TABLE)
            .select("*")
            .eq("status", "processing")
            .not_.is_("external_order_ref", "null")
            .lt("updated_at", stale_before.isoformat())
            .order("updated_at")
            .limit(limit)
            .execute()
        )
        return response.data or []
