"""Best-effort order notifications delivered through a background queue."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from html import escape
from typing import Any

from src.core.config import get_settings
from src.core.telegram import TelegramTransport
from src.models.fulfillment import FulfillmentOutcome

logger = logging.getLogger(__name__)

_TITLES = {
    "completed": "Order Completed",
    "failed": "Order Failed",
    "pending_manual": "Manual Fulfillment Required",
    "processing": "Order Submitted to Provider",
}


@dataclass
class OrderNotification:
    """Summary of an order outcome for operators."""

    status: str
    order_id: str
    game_name: str
    package_name: str
    player_id: str
    server_id: str | None
    amount: Any
    currency: str
    external_order_ref: str | None = None
    detail: str | None = None
    source: str | None = None
    error_kind: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status in ("failed", "pending_manual") or self.error_kind is not None

    @classmethod
    def from_outcome(
        cls,
        order: dict[str, Any],
        outcome: FulfillmentOutcome,
        source: str | None = None,
    ) -> "OrderNotification":
        if outcome.status == "completed":
            detail = f"{outcome.card_count} code(s) delivered" if outcome.card_count else None
        else:
            detail = outcome.provider_message or outcome.message
        return cls(
            status=outcome.status or "unknown",
            order_id=str(order.get("id")),
            game_name=order.get("game_name", ""),
            package_name=order.get("package_name", ""),
            player_id=order.get("player_id", ""),
            server_id=order.get("server_id"),
            amount=order.get("amount"),
            currency=order.get("currency") or "USD",
            external_order_ref=outcome.external_order_ref or order.get("external_order_ref"),
            detail=detail,
            source=source,
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
        )

    def render(self) -> str:
        """Format as an HTML message for the chat."""
        if self.status == "processing" and self.is_error:
            title = "Provider Request Unconfirmed"
        else:
            title = _TITLES.get(self.status, f"Order {self.status}")
        if self.source:
            title = f"{title} ({self.source})"
        player = escape(str(self.player_id))
        if self.server_id:
            player = f"{player} (Server: {escape(str(self.server_id))})"

        lines = [
            f"{'[FAIL]' if self.is_error else '[OK]'} <b>{escape(title)}</b>",
            f"Game: {escape(self.game_name)}",
            f"Package: {escape(self.package_name)}",
            f"Player: {player}",
            f"Amount: {escape(str(self.amount))} {escape(self.currency)}",
            f"Order ID: {escape(self.order_id)}",
        ]
        if self.external_order_ref:
            lines.append(f"Provider Order: {escape(self.external_order_ref)}")
        if self.detail:
            lines.append(f"{'Error' if self.is_error else 'Info'}: {escape(self.detail)}")
        return "\n".join(lines)


class NotificationService:
    """Queues notifications and sends them from a worker task.

    notify() never awaits network I/O, so a slow or failing chat transport
    cannot delay an order state transition.
    """

    def __init__(
        self,
        transport: TelegramTransport | None = None,
        max_queue_size: int | None = None,
    ) -> None:
        settings = get_settings()
        self.transport = transport or TelegramTransport()
        self._queue: asyncio.Queue[OrderNotification] = asyncio.Queue(
            maxsize=max_queue_size or settings.notification_queue_size
        )
        self._worker_task: asyncio.Task | None = None

    def notify(
        self,
        order: dict[str, Any],
        outcome: FulfillmentOutcome,
        source: str | None = None,
    ) -> bool:
        """Enqueue a notification for an order outcome.

        Returns:
            bool: False if the notification was dropped.
        """
        try:
            notification = OrderNotification.from_outcome(order, outcome, source=source)
            self._queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            logger.warning("Notification queue full, dropping notification for order %s", order.get("id"))
        except Exception as e:
            logger.error("Failed to enqueue notification for order %s: %s", order.get("id"), str(e))
        return False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start_worker(self) -> None:
        """Start background delivery task."""
        if self._worker_task is None:
            self._worker_task = asyncio.create_task(self._worker_loop())
            logger.info("Notification worker started")

    async def stop_worker(self, drain_timeout: float = 5.0) -> None:
        """Give queued notifications a chance to go out, then stop the worker."""
        if self._worker_task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained on shutdown (%d pending)", self._queue.qsize())
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None
        logger.info("Notification worker stopped")

    async def _worker_loop(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.deliver(notification)
            finally:
                self._queue.task_done()

    async def deliver(self, notification: OrderNotification) -> bool:
        """Send one notification, logging instead of raising on failure."""
        try:
            await self.transport.send(notification.render())
            return True
        except Exception as e:
            logger.error(
                "Failed to send notification for order %s: %s",
                notification.order_id,
                f"{type(e).__name__}: {e}",
            )
            return False


# Global singleton instance
_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the global notification service."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


async def init_notification_service() -> NotificationService:
    """Start the notification worker. Call at app startup."""
    service = get_notification_service()
    await service.start_worker()
    return service


async def shutdown_notification_service() -> None:
    """Drain and stop the notification worker. Call at app shutdown."""
    global _notification_service
    if _notification_service:
        await _notification_service.stop_worker()
        _notification_service = None
