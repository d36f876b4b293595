"""Order fulfillment: drives a paid order to a terminal state via the provider."""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from src.core.config import Settings, get_settings
from src.core.provider import ProviderClient, create_provider_client
from src.models.fulfillment import FulfillmentErrorKind, FulfillmentOutcome, ProviderResult
from src.models.order import LEASEABLE_STATUSES, RETRYABLE_STATUSES, map_provider_status
from src.models.product import ProviderCredential, RechargeMapping, VoucherMapping
from src.services.catalog_service import CredentialService
from src.services.notification_service import NotificationService, get_notification_service
from src.services.order_store import OrderStore
from src.services.product_resolver import MissingMappingError, ProductResolver

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderCredential], ProviderClient]

EMPTY_DELIVERY_FLAG = "EMPTY DELIVERY"


def idempotency_token(order_id: UUID | str) -> str:
    """Token sent in the provider remark field; identifies our order on callbacks."""
    return f"order_id:{order_id}"


def parse_idempotency_token(remark: str | None) -> str | None:
    """Extract our order id from a provider remark, if it carries one."""
    if remark and remark.startswith("order_id:"):
        return remark[len("order_id:"):].strip() or None
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class FulfillmentService:
    """State machine for order fulfillment.

    paid -> processing -> completed | failed | pending_manual. Moving to
    processing is a conditional write that acts as a per-order lease; only
    the caller that wins it talks to the provider.
    """

    def __init__(
        self,
        orders: OrderStore | None = None,
        resolver: ProductResolver | None = None,
        credentials: CredentialService | None = None,
        notifier: NotificationService | None = None,
        provider_factory: ProviderFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize fulfillment service with its collaborators."""
        self.orders = orders or OrderStore()
        self.resolver = resolver or ProductResolver()
        self.credentials = credentials or CredentialService()
        self.notifier = notifier or get_notification_service()
        self.provider_factory = provider_factory or create_provider_client
        self.settings = settings or get_settings()

    async def handle_payment_confirmed(self, order_id: UUID | str) -> FulfillmentOutcome:
        """Mark a pending order paid and start fulfillment.

        Args:
            order_id: The order's UUID.

        Returns:
            FulfillmentOutcome: Result of the fulfillment attempt.
        """
        order = await self.orders.get_order(order_id)
        if not order:
            return self._not_found(order_id)

        if order["status"] not in ("pending", "paid"):
            logger.info("Payment confirmation for order %s ignored; order is %s", order_id, order["status"])
            return self._unchanged(order, f"Order is {order['status']}; payment already handled.")

        if order["status"] == "pending":
            await self.orders.update_if_status(
                order_id,
                {"status": "paid", "status_message": "Payment confirmed. Awaiting fulfillment."},
                ("pending",),
            )
            logger.info("Order %s marked as paid", order_id)

        return await self.fulfill(order_id)

    async def fulfill(self, order_id: UUID | str, force: bool = False) -> FulfillmentOutcome:
        """Fulfill an order. Safe to call repeatedly.

        Only paid orders are dispatched; every other status is left alone,
        so a repeated trigger never causes a second provider call. With
        force=True an operator may re-run a failed or pending_manual order,
        or take over a processing order whose provider call never returned
        a reference and has been idle longer than the reconcile threshold.

        Args:
            order_id: The order's UUID.
            force: Operator retry of a settled or stale processing order.

        Returns:
            FulfillmentOutcome: Resulting status and diagnostics.
        """
        order = await self.orders.get_order(order_id)
        if not order:
            return self._not_found(order_id)

        status = order["status"]
        if force and status == "processing":
            if not self._is_reclaimable(order):
                return self._unchanged(
                    order,
                    "Order is still in flight with the provider; use status check instead of retry.",
                )
            allowed: tuple[str, ...] = ("processing",)
        elif force and status in RETRYABLE_STATUSES:
            allowed = RETRYABLE_STATUSES
        elif status in LEASEABLE_STATUSES:
            allowed = LEASEABLE_STATUSES
        elif status in RETRYABLE_STATUSES:
            logger.info("Order %s is %s; retry requires force", order_id, status)
            return self._unchanged(order, f"Order is {status}; use force to retry.")
        else:
            logger.info("Order %s is %s; nothing to dispatch", order_id, status)
            return self._unchanged(order, f"Order is {status}; nothing to dispatch.")

        credential = await self.credentials.get_credential(self.settings.provider_name)
        if credential is None or not credential.is_usable:
            logger.warning("Provider %s not configured, order %s needs manual fulfillment", self.settings.provider_name, order_id)
            return await self._escalate(
                order,
                "Provider not configured. Manual fulfillment required.",
                allowed,
            )

        try:
            mapping = await self.resolver.resolve(order)
        except MissingMappingError as e:
            logger.warning("No product mapping for order %s: %s", order_id, e.message)
            return await self._escalate(order, e.message, allowed)

        lease_data: dict[str, Any] = {
            "status": "processing",
            "status_message": "Sending to provider for fulfillment...",
        }
        if mapping.product_ref != order.get("external_product_ref"):
            lease_data["external_product_ref"] = mapping.product_ref

        if allowed == ("processing",):
            stale_before = datetime.now(timezone.utc) - timedelta(seconds=self.settings.reconcile_stale_after_seconds)
            leased = await self.orders.reclaim_stale_processing(order_id, lease_data, stale_before)
        else:
            leased = await self.orders.update_if_status(order_id, lease_data, allowed)

        if not leased:
            current = await self.orders.get_order(order_id) or order
            logger.info("Order %s already being fulfilled (status %s); skipping duplicate trigger", order_id, current["status"])
            return self._unchanged(current, "Fulfillment already in progress.")

        logger.info(
            "Dispatching order %s as %s (%s)",
            order_id,
            mapping.product_type,
            mapping.product_ref,
        )
        client = self.provider_factory(credential)

        if isinstance(mapping, VoucherMapping):
            outcome = await self._fulfill_voucher(leased, mapping, client)
        else:
            outcome = await self._fulfill_recharge(leased, mapping, client)

        if outcome.changed or outcome.error_kind == FulfillmentErrorKind.TRANSPORT:
            self.notifier.notify(leased, outcome)
        return outcome

    async def _fulfill_voucher(
        self,
        order: dict[str, Any],
        mapping: VoucherMapping,
        client: ProviderClient,
    ) -> FulfillmentOutcome:
        result = await client.purchase_voucher(mapping.sku_id, quantity=1)

        if result.transport_error:
            return await self._record_transport_error(order, result)

        if not result.accepted:
            return await self._settle(
                order,
                {"status": "failed", "status_message": f"Provider voucher error: {result.error_message}"},
                error_kind=FulfillmentErrorKind.PROVIDER_REJECTION,
                provider_message=result.error_message,
            )

        codes = [item.to_card_code() for item in result.delivered_items]
        data: dict[str, Any] = {}
        if result.external_order_ref:
            data["external_order_ref"] = result.external_order_ref

        if codes:
            data.update(
                status="completed",
                status_message=f"Voucher order {result.external_order_ref}: {len(codes)} code(s) delivered.",
                card_codes=codes,
            )
            return await self._settle(order, data, card_count=len(codes))

        logger.warning(
            "Provider accepted voucher order %s for order %s but delivered no codes",
            result.external_order_ref,
            order["id"],
        )
        message = (
            f"{EMPTY_DELIVERY_FLAG}: provider accepted voucher order {result.external_order_ref} "
            "but delivered no codes. Verify delivery with the provider."
        )
        if self.settings.voucher_empty_delivery_policy == "manual":
            data.update(status="pending_manual", status_message=message)
        else:
            data.update(status="completed", status_message=message)
        return await self._settle(order, data)

    async def _fulfill_recharge(
        self,
        order: dict[str, Any],
        mapping: RechargeMapping,
        client: ProviderClient,
    ) -> FulfillmentOutcome:
        result = await client.place_recharge_order(
            game_code=mapping.game_code,
            catalog_name=mapping.catalog_name,
            player_id=order["player_id"],
            server_id=order.get("server_id"),
            idempotency_token=idempotency_token(order["id"]),
            callback_url=self.settings.provider_callback_url,
        )

        if result.transport_error:
            return await self._record_transport_error(order, result)

        if not result.accepted:
            return await self._settle(
                order,
                {"status": "failed", "status_message": f"Provider error: {result.error_message}"},
                error_kind=FulfillmentErrorKind.PROVIDER_REJECTION,
                provider_message=result.error_message,
            )

        new_status = map_provider_status(result.provider_status)
        ref = result.external_order_ref
        if new_status == "completed":
            message = f"Successfully delivered via provider. Order: {ref}"
        elif new_status == "failed":
            message = f"Provider delivery failed. Order: {ref}"
        else:
            message = f"Provider order: {ref}. Status: {result.provider_status}"

        return await self._settle(
            order,
            {"status": new_status, "status_message": message, "external_order_ref": ref},
            provider_message=result.provider_status if new_status == "failed" else None,
        )

    async def _settle(
        self,
        order: dict[str, Any],
        data: dict[str, Any],
        error_kind: FulfillmentErrorKind | None = None,
        provider_message: str | None = None,
        card_count: int = 0,
    ) -> FulfillmentOutcome:
        """Write the provider result, unless reconciliation already did."""
        order_id = order["id"]
        updated = await self.orders.update_if_status(order_id, data, ("processing",))
        if updated:
            logger.info("Order %s -> %s", order_id, data["status"])
            return FulfillmentOutcome(
                order_id=str(order_id),
                status=data["status"],
                message=data.get("status_message"),
                error_kind=error_kind,
                provider_message=provider_message,
                external_order_ref=data.get("external_order_ref"),
                dispatched=True,
                changed=True,
                card_count=card_count,
            )

        external_ref = data.get("external_order_ref")
        if external_ref:
            await self.orders.set_external_order_ref_if_missing(order_id, external_ref)
        current = await self.orders.get_order(order_id) or order
        logger.warning(
            "Order %s was settled as %s before the provider response (%s) was recorded",
            order_id,
            current["status"],
            data["status"],
        )
        return FulfillmentOutcome(
            order_id=str(order_id),
            status=current["status"],
            message=current.get("status_message"),
            provider_message=provider_message,
            external_order_ref=current.get("external_order_ref") or external_ref,
            dispatched=True,
        )

    async def _record_transport_error(self, order: dict[str, Any], result: ProviderResult) -> FulfillmentOutcome:
        """Leave the order in processing: the provider may or may not have acted."""
        message = (
            f"Provider request failed: {result.error_message}. "
            "Order left in processing; check status before retrying."
        )
        logger.error("Provider call for order %s failed: %s", order["id"], result.error_message)
        await self.orders.update_if_status(order["id"], {"status_message": message}, ("processing",))
        return FulfillmentOutcome(
            order_id=str(order["id"]),
            status="processing",
            message=message,
            error_kind=FulfillmentErrorKind.TRANSPORT,
            provider_message=result.error_message,
            dispatched=True,
        )

    async def _escalate(
        self,
        order: dict[str, Any],
        message: str,
        allowed: Iterable[str],
    ) -> FulfillmentOutcome:
        """Route a configuration problem to manual handling. No provider call is made."""
        updated = await self.orders.update_if_status(
            order["id"],
            {"status": "pending_manual", "status_message": message},
            allowed,
        )
        if not updated:
            current = await self.orders.get_order(order["id"]) or order
            return self._unchanged(current, "Order changed concurrently; not escalated.")

        outcome = FulfillmentOutcome(
            order_id=str(order["id"]),
            status="pending_manual",
            message=message,
            error_kind=FulfillmentErrorKind.CONFIGURATION,
            external_order_ref=order.get("external_order_ref"),
            changed=order["status"] != "pending_manual",
        )
        if outcome.changed:
            self.notifier.notify(updated, outcome)
        return outcome

    def _is_reclaimable(self, order: dict[str, Any]) -> bool:
        if order.get("external_order_ref"):
            return False
        updated_at = _parse_timestamp(order.get("updated_at"))
        if updated_at is None:
            return False
        age = datetime.now(timezone.utc) - updated_at
        return age.total_seconds() >= self.settings.reconcile_stale_after_seconds

    @staticmethod
    def _unchanged(order: dict[str, Any], message: str) -> FulfillmentOutcome:
        return FulfillmentOutcome(
            order_id=str(order["id"]),
            status=order["status"],
            message=message,
            external_order_ref=order.get("external_order_ref"),
        )

    @staticmethod
    def _not_found(order_id: UUID | str) -> FulfillmentOutcome:
        return FulfillmentOutcome(
            order_id=str(order_id),
            status=None,
            message="Order not found",
            error_kind=FulfillmentErrorKind.NOT_FOUND,
        )
