"""Status reconciliation from provider callbacks and polling."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from src.core.config import Settings, get_settings
from src.core.provider import ProviderClient, create_provider_client
from src.models.fulfillment import (
    DeliveredItem,
    FulfillmentErrorKind,
    FulfillmentOutcome,
    SweepResult,
)
from src.models.order import RECONCILABLE_STATUSES, is_terminal, map_provider_status
from src.models.product import VoucherMapping
from src.services.catalog_service import CredentialService
from src.services.fulfillment_service import ProviderFactory, parse_idempotency_token
from src.services.notification_service import NotificationService, get_notification_service
from src.services.order_store import OrderStore
from src.services.product_resolver import MissingMappingError, ProductResolver

logger = logging.getLogger(__name__)

SETTLED_STATUSES = ("completed", "failed")


def verify_callback_signature(body: bytes, headers: Mapping[str, str], secret: str) -> bool:
    """Check a provider callback against the webhook secret.

    Accepts either an X-Signature HMAC-SHA256 hex digest of the raw body, or
    the shared secret itself in Authorization: Bearer or X-G2Bulk-Signature.
    Always False when no secret is configured.
    """
    if not secret:
        return False

    signature = headers.get("x-signature")
    if signature:
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature.strip().lower().encode(), expected.encode())

    authorization = headers.get("authorization") or ""
    token = authorization[7:].strip() if authorization.lower().startswith("bearer ") else None
    token = token or headers.get("x-g2bulk-signature")
    return bool(token) and hmac.compare_digest(token.encode(), secret.encode())


def _valid_uuid(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        return None


class ReconciliationService:
    """Applies provider status updates to orders.

    Callbacks and polls share one write path. Writes only land while the
    order is still pending/paid/processing, so a late or duplicated event
    can never move a settled order backwards.
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
        self.orders = orders or OrderStore()
        self.resolver = resolver or ProductResolver()
        self.credentials = credentials or CredentialService()
        self.notifier = notifier or get_notification_service()
        self.provider_factory = provider_factory or create_provider_client
        self.settings = settings or get_settings()

    async def handle_callback(self, payload: dict[str, Any]) -> FulfillmentOutcome | None:
        """Apply a provider status callback.

        The order is found by the provider's order id, falling back to the
        order id carried in the remark (the callback can beat the write of
        the provider reference).

        Args:
            payload: Callback body ({order_id, status, message, remark, delivery_items, ...}).

        Returns:
            FulfillmentOutcome | None: None if no matching order exists.
        """
        external_ref = str(payload.get("order_id") or "").strip() or None
        provider_status = str(payload.get("status") or "")
        provider_message = str(payload.get("message") or "") or None
        internal_id = _valid_uuid(parse_idempotency_token(str(payload.get("remark") or "")))

        order = None
        if external_ref:
            order = await self.orders.find_by_external_order_ref(external_ref)
        if not order and internal_id:
            order = await self.orders.get_order(internal_id)

        if not order:
            logger.warning(
                "Callback for unknown order (provider order %s, remark id %s)",
                external_ref,
                internal_id,
            )
            return None

        items = payload.get("delivery_items") or []
        delivered = [DeliveredItem.from_raw(item) for item in items] if isinstance(items, list) else []

        return await self.apply_provider_status(
            order,
            provider_status,
            external_order_ref=external_ref,
            provider_message=provider_message,
            delivered_items=delivered,
            source="callback",
        )

    async def check_status(self, order_id: UUID | str) -> FulfillmentOutcome:
        """Poll the provider for one order and apply the result.

        Orders without a provider reference, settled orders and voucher
        orders are returned as they are.
        """
        order = await self.orders.get_order(order_id)
        if not order:
            return FulfillmentOutcome(
                order_id=str(order_id),
                status=None,
                message="Order not found",
                error_kind=FulfillmentErrorKind.NOT_FOUND,
            )

        if order["status"] not in RECONCILABLE_STATUSES:
            return self._unchanged(order, f"Order is {order['status']}; nothing to reconcile.")
        if not order.get("external_order_ref"):
            return self._unchanged(order, "No provider order reference to check.")

        credential = await self.credentials.get_credential(self.settings.provider_name)
        if credential is None or not credential.is_usable:
            return self._unchanged(
                order,
                "Provider not configured.",
                error_kind=FulfillmentErrorKind.CONFIGURATION,
            )

        return await self._poll(order, self.provider_factory(credential))

    async def sweep(self) -> SweepResult:
        """Poll processing orders that have been idle past the stale threshold."""
        result = SweepResult()

        credential = await self.credentials.get_credential(self.settings.provider_name)
        if credential is None or not credential.is_usable:
            logger.info("Provider not configured or disabled; skipping sweep")
            result.skipped_reason = "Provider not configured"
            return result

        stale_before = datetime.now(timezone.utc) - timedelta(seconds=self.settings.reconcile_stale_after_seconds)
        orders = await self.orders.list_stale_processing(stale_before, self.settings.reconcile_batch_size)
        if not orders:
            logger.debug("No stale processing orders to check")
            return result

        logger.info("Checking %d stale processing orders", len(orders))
        client = self.provider_factory(credential)

        for index, order in enumerate(orders):
            result.checked += 1
            try:
                outcome = await self._poll(order, client)
            except Exception as e:
                result.errors += 1
                logger.error("Error checking order %s: %s", order.get("id"), f"{type(e).__name__}: {e}")
                continue

            if outcome.error_kind is not None:
                result.errors += 1
            if outcome.changed:
                result.updated += 1
                if outcome.status == "completed":
                    result.completed += 1
                elif outcome.status == "failed":
                    result.failed += 1

            if index < len(orders) - 1 and self.settings.reconcile_request_delay_seconds > 0:
                await asyncio.sleep(self.settings.reconcile_request_delay_seconds)

        logger.info(
            "Sweep done. Checked: %d, Updated: %d, Completed: %d, Failed: %d, Errors: %d",
            result.checked,
            result.updated,
            result.completed,
            result.failed,
            result.errors,
        )
        return result

    async def _poll(self, order: dict[str, Any], client: ProviderClient) -> FulfillmentOutcome:
        try:
            mapping = await self.resolver.resolve(order)
        except MissingMappingError as e:
            return self._unchanged(order, e.message, error_kind=FulfillmentErrorKind.CONFIGURATION)

        if isinstance(mapping, VoucherMapping):
            return self._unchanged(order, "Voucher orders complete at purchase; nothing to poll.")

        result = await client.check_order_status(mapping.game_code, order["external_order_ref"])
        if result.transport_error:
            logger.error("Status check for order %s failed: %s", order["id"], result.error_message)
            return self._unchanged(
                order,
                "Provider unreachable; status unchanged.",
                error_kind=FulfillmentErrorKind.TRANSPORT,
                provider_message=result.error_message,
            )
        if not result.accepted:
            logger.warning("Provider status error for order %s: %s", order["id"], result.error_message)
            return self._unchanged(
                order,
                "Provider could not report status; status unchanged.",
                error_kind=FulfillmentErrorKind.PROVIDER_REJECTION,
                provider_message=result.error_message,
            )

        return await self.apply_provider_status(
            order,
            result.provider_status,
            external_order_ref=order["external_order_ref"],
            provider_message=result.error_message,
            source="poll",
        )

    async def apply_provider_status(
        self,
        order: dict[str, Any],
        provider_status: str | None,
        external_order_ref: str | None = None,
        provider_message: str | None = None,
        delivered_items: Iterable[DeliveredItem] = (),
        source: str = "callback",
    ) -> FulfillmentOutcome:
        """Apply a provider status to an order with a monotonic write."""
        order_id = order["id"]
        current = order["status"]
        new_status = map_provider_status(provider_status)
        ref = external_order_ref or order.get("external_order_ref")

        if current not in RECONCILABLE_STATUSES:
            return self._ignored(order, new_status, provider_status, source)

        if new_status == "processing" and current == "processing":
            if ref and not order.get("external_order_ref"):
                await self.orders.set_external_order_ref_if_missing(order_id, ref)
            return self._unchanged(order, f"Provider order {ref} status: {provider_status}")

        codes = [item.to_card_code() for item in delivered_items]
        if codes and new_status == "completed" and not await self._is_voucher_order(order):
            logger.warning("Ignoring %d delivered item(s) for non-voucher order %s", len(codes), order_id)
            codes = []

        if new_status == "completed":
            message = f"Provider order {ref} completed."
            if codes:
                message += f" {len(codes)} code(s) delivered."
        elif new_status == "failed":
            message = f"Provider order {ref} failed. {provider_message or ''}".strip()
        else:
            message = f"Provider order {ref} status: {provider_status}"

        data: dict[str, Any] = {"status": new_status, "status_message": message}
        if ref:
            data["external_order_ref"] = ref
        if new_status == "completed" and codes:
            data["card_codes"] = codes

        updated = await self.orders.update_if_status(order_id, data, RECONCILABLE_STATUSES)
        if not updated:
            latest = await self.orders.get_order(order_id) or order
            return self._ignored(latest, new_status, provider_status, source)

        logger.info("Order %s updated by %s: %s -> %s", order_id, source, current, new_status)
        outcome = FulfillmentOutcome(
            order_id=str(order_id),
            status=new_status,
            message=message,
            provider_message=provider_message if new_status == "failed" else None,
            external_order_ref=ref,
            changed=True,
            card_count=len(codes),
        )
        if is_terminal(new_status):
            self.notifier.notify(updated, outcome, source=source.capitalize())
        return outcome

    async def _is_voucher_order(self, order: dict[str, Any]) -> bool:
        try:
            mapping = await self.resolver.resolve(order)
        except MissingMappingError:
            return False
        return isinstance(mapping, VoucherMapping)

    def _ignored(
        self,
        order: dict[str, Any],
        new_status: str,
        provider_status: str | None,
        source: str,
    ) -> FulfillmentOutcome:
        """An event arrived for an order that is no longer reconcilable."""
        current = order["status"]
        if new_status in SETTLED_STATUSES and current in SETTLED_STATUSES and new_status != current:
            logger.warning(
                "Reconciliation anomaly: %s reported %s for order %s already %s; keeping %s",
                source,
                provider_status,
                order["id"],
                current,
                current,
            )
            return self._unchanged(
                order,
                f"Ignored {source} status {provider_status}: order already {current}.",
                error_kind=FulfillmentErrorKind.RECONCILIATION_CONFLICT,
                provider_message=provider_status,
            )

        logger.info(
            "Ignoring %s status %s for order %s in status %s",
            source,
            provider_status,
            order["id"],
            current,
        )
        return self._unchanged(order, f"Order is {current}; {source} status {provider_status} ignored.")

    @staticmethod
    def _unchanged(
        order: dict[str, Any],
        message: str,
        error_kind: FulfillmentErrorKind | None = None,
        provider_message: str | None = None,
    ) -> FulfillmentOutcome:
        return FulfillmentOutcome(
            order_id=str(order["id"]),
            status=order["status"],
            message=message,
            error_kind=error_kind,
            provider_message=provider_message,
            external_order_ref=order.get("external_order_ref"),
        )


class ReconciliationSweeper:
    """Runs ReconciliationService.sweep() on a fixed interval."""

    def __init__(self, interval_seconds: int, service_factory: Any = None) -> None:
        self.interval_seconds = interval_seconds
        self._service_factory = service_factory or ReconciliationService
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start background sweep task."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Reconciliation sweep started (every %ds)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop background sweep task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Reconciliation sweep stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self._service_factory().sweep()
            except Exception as e:
                logger.error("Reconciliation sweep failed: %s", f"{type(e).__name__}: {e}")


# Global singleton instance
_sweeper: ReconciliationSweeper | None = None


async def init_reconciliation_sweep() -> ReconciliationSweeper | None:
    """Start the periodic sweep if enabled. Call at app startup."""
    global _sweeper
    settings = get_settings()
    if not settings.reconcile_sweep_enabled:
        logger.info("Reconciliation sweep disabled")
        return None
    if _sweeper is None:
        _sweeper = ReconciliationSweeper(settings.reconcile_sweep_interval_seconds)
    await _sweeper.start()
    return _sweeper


async def shutdown_reconciliation_sweep() -> None:
    """Stop the periodic sweep. Call at app shutdown."""
    global _sweeper
    if _sweeper:
        await _sweeper.stop()
        _sweeper = None
