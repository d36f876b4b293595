"""Recharge/voucher provider API client.

Wraps the provider's REST API behind typed methods that always return a
normalized ProviderResult. Whether a failure is worth retrying is decided
by the caller, not here.
"""

import logging
import time
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings
from src.models.fulfillment import DeliveredItem, ProviderResult
from src.models.product import CatalogEntry, ProviderCredential

logger = logging.getLogger(__name__)

# Retry configuration (read-only calls only)
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 0.5
MAX_WAIT_SECONDS = 5

# Latency threshold for logging (milliseconds)
SLOW_CALL_THRESHOLD_MS = 3000


class ProviderTransportError(Exception):
    """The provider could not be reached or returned an unreadable response."""


def _error_message(payload: dict[str, Any]) -> str:
    """Pull the provider's own error message out of a failure body."""
    message = payload.get("message")
    if message:
        return str(message)
    detail = payload.get("detail")
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    if isinstance(detail, str) and detail:
        return detail
    return "Provider rejected the request"


def _as_provider_order_id(external_order_ref: str) -> int | str:
    """The status endpoint expects numeric order ids where possible."""
    try:
        return int(external_order_ref)
    except (TypeError, ValueError):
        return external_order_ref


class ProviderClient:
    """Typed async client for the recharge provider."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key
        self._base_url = (base_url or settings.provider_api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-API-Key": self._api_key,
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body.

        Raises:
            ProviderTransportError: On network failure, 5xx, or a body that is not a JSON object.
        """
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, endpoint, headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            logger.error("Provider %s %s failed: %s", method, endpoint, f"{type(e).__name__}: {e}")
            raise ProviderTransportError(f"{type(e).__name__}: {e}") from e
        finally:
            latency_ms = (time.perf_counter() - start_time) * 1000
            if latency_ms > SLOW_CALL_THRESHOLD_MS:
                logger.warning("Slow provider call %s %s: %.0fms", method, endpoint, latency_ms)

        if response.status_code >= 500:
            raise ProviderTransportError(f"Provider returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderTransportError(
                f"Malformed provider response (HTTP {response.status_code})"
            ) from e

        if not isinstance(payload, dict):
            raise ProviderTransportError("Malformed provider response: expected a JSON object")

        logger.debug("Provider %s %s -> %s", method, endpoint, payload)
        return payload

    @retry(
        retry=retry_if_exception_type(ProviderTransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=MIN_WAIT_SECONDS, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Request with retry, for calls that cannot create orders."""
        return await self._request(method, endpoint, body)

    async def place_recharge_order(
        self,
        game_code: str,
        catalog_name: str,
        player_id: str,
        server_id: str | None,
        idempotency_token: str,
        callback_url: str,
    ) -> ProviderResult:
        """Create a top-up order for a player's game account.

        The idempotency token travels in the provider's remark field so a
        repeated call can be matched to the original order. Never retried here.

        Args:
            game_code: Provider game code.
            catalog_name: Provider catalogue (denomination) name.
            player_id: Player account id.
            server_id: Optional server/zone id.
            idempotency_token: Token identifying our order.
            callback_url: Where the provider should push status updates.

        Returns:
            ProviderResult: accepted with external_order_ref and provider_status, or an error.
        """
        body: dict[str, Any] = {
            "catalogue_name": catalog_name,
            "player_id": player_id,
            "remark": idempotency_token,
            "callback_url": callback_url,
        }
        if server_id:
            body["server_id"] = server_id

        try:
            payload = await self._request("POST", f"/games/{game_code}/order", body)
        except ProviderTransportError as e:
            return ProviderResult(accepted=False, error_message=str(e), transport_error=True)

        order = payload.get("order")
        if payload.get("success") and isinstance(order, dict) and order.get("order_id") is not None:
            return ProviderResult(
                accepted=True,
                external_order_ref=str(order["order_id"]),
                provider_status=str(order.get("status") or "") or None,
                raw=payload,
            )

        return ProviderResult(accepted=False, error_message=_error_message(payload), raw=payload)

    async def purchase_voucher(self, sku_id: str, quantity: int = 1) -> ProviderResult:
        """Buy a pre-stocked voucher; codes are delivered in the response.

        Args:
            sku_id: Provider product id.
            quantity: Number of codes to buy.

        Returns:
            ProviderResult: accepted with delivered_items, or an error.
        """
        try:
            payload = await self._request("POST", f"/products/{sku_id}/purchase", {"quantity": quantity})
        except ProviderTransportError as e:
            return ProviderResult(accepted=False, error_message=str(e), transport_error=True)

        if not payload.get("success"):
            return ProviderResult(accepted=False, error_message=_error_message(payload), raw=payload)

        order_ref = payload.get("order_id") or payload.get("transaction_id")
        items = payload.get("delivery_items") or []
        return ProviderResult(
            accepted=True,
            external_order_ref=str(order_ref) if order_ref is not None else None,
            delivered_items=[DeliveredItem.from_raw(item) for item in items],
            provider_status="COMPLETED",
            raw=payload,
        )

    async def check_order_status(self, game_code: str, external_order_ref: str) -> ProviderResult:
        """Poll the provider for the current status of a recharge order."""
        body = {"order_id": _as_provider_order_id(external_order_ref), "game": game_code}
        try:
            payload = await self._request_with_retry("POST", "/games/order/status", body)
        except ProviderTransportError as e:
            return ProviderResult(accepted=False, error_message=str(e), transport_error=True)

        order = payload.get("order")
        if payload.get("success") and isinstance(order, dict):
            return ProviderResult(
                accepted=True,
                external_order_ref=str(order.get("order_id") or external_order_ref),
                provider_status=str(order.get("status") or "") or None,
                error_message=order.get("message"),
                raw=payload,
            )

        return ProviderResult(accepted=False, error_message=_error_message(payload), raw=payload)

    async def get_balance(self) -> dict[str, Any]:
        """Fetch the provider account (balance) info.

        Raises:
            ProviderTransportError: If the provider is unreachable after retries.
        """
        return await self._request_with_retry("GET", "/getMe")

    async def list_catalog(self) -> list[CatalogEntry]:
        """List every purchasable item: game catalogues and voucher products.

        Games whose catalogue cannot be fetched are skipped with an error log.

        Raises:
            ProviderTransportError: If the game or product listings are unreachable.
        """
        entries: list[CatalogEntry] = []

        games_payload = await self._request_with_retry("GET", "/games")
        for game in games_payload.get("games") or []:
            game_code = game.get("code")
            if not game_code:
                continue
            try:
                catalogue_payload = await self._request_with_retry("GET", f"/games/{game_code}/catalogue")
            except ProviderTransportError as e:
                logger.error("Error fetching catalogue for game %s: %s", game_code, str(e))
                continue

            for catalogue in catalogue_payload.get("catalogues") or []:
                entries.append(
                    CatalogEntry(
                        provider_product_ref=f"recharge_{game_code}_{catalogue.get('id')}",
                        product_type="recharge",
                        game_name=game.get("name") or game_code,
                        product_name=catalogue.get("name", ""),
                        price=float(catalogue.get("amount") or 0),
                        fields={"game_code": game_code},
                    )
                )

        products_payload = await self._request_with_retry("GET", "/products")
        for product in products_payload.get("products") or []:
            entries.append(
                CatalogEntry(
                    provider_product_ref=f"voucher_{product.get('id')}",
                    product_type="voucher",
                    game_name=product.get("category_title") or "Vouchers",
                    product_name=product.get("title", ""),
                    price=float(product.get("unit_price") or 0),
                    fields={"sku_id": str(product.get("id")), "stock": product.get("stock")},
                )
            )

        logger.info("Provider catalog listed: %d entries", len(entries))
        return entries


def create_provider_client(credential: ProviderCredential) -> ProviderClient:
    """Build a provider client for a usable credential.

    Raises:
        ValueError: If the credential is disabled or has no API key.
    """
    if not credential.is_usable or not credential.api_key:
        raise ValueError(f"Provider {credential.provider_name} is not configured")
    return ProviderClient(api_key=credential.api_key)
