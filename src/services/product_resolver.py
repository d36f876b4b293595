"""Resolves an order's product linkage into provider identifiers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any

from src.core.config import get_settings
from src.models.product import (
    ProductMapping,
    ProductType,
    ProviderProduct,
    RechargeMapping,
    VoucherMapping,
)
from src.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

RECHARGE_PREFIXES = ("recharge_", "game_")
VOUCHER_PREFIXES = ("voucher_", "card_")


class MissingMappingError(Exception):
    """No usable provider mapping exists for an order. Never retriable."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        self.message = message
        self.reference = reference
        super().__init__(message)


@dataclass(frozen=True)
class ParsedReference:
    """Identifiers encoded in a provider reference string."""

    product_type: ProductType
    game_code: str | None = None
    sku_id: str | None = None


def parse_product_ref(product_ref: str | None) -> ParsedReference | None:
    """Parse `recharge_<gameCode>_<id>` / `voucher_<id>` references.

    The legacy `game_` and `card_` prefixes are accepted too. Game codes may
    themselves contain underscores; the last segment is always the id.

    Returns:
        ParsedReference | None: None if the reference has no known prefix.
    """
    if not product_ref:
        return None

    if product_ref.startswith(RECHARGE_PREFIXES):
        parts = product_ref.split("_")
        if len(parts) >= 3:
            game_code = "_".join(parts[1:-1])
            return ParsedReference(product_type="recharge", game_code=game_code or None)
        return ParsedReference(product_type="recharge")

    if product_ref.startswith(VOUCHER_PREFIXES):
        sku_id = product_ref.split("_", 1)[1]
        return ParsedReference(product_type="voucher", sku_id=sku_id or None)

    return None


def _normalize_product_type(value: str | None) -> ProductType | None:
    if not value:
        return None
    value = value.lower()
    if value in ("voucher", "card"):
        return "voucher"
    if value in ("recharge", "game"):
        return "recharge"
    return None


@dataclass
class _CacheEntry:
    value: ProviderProduct
    expires_at: float

    def is_expired(self) -> bool:
        return time.time() > self.expires_at


class ProductResolver:
    """Finds the provider game code, catalog name and product type for an order.

    Sources are tried in order: the synced provider product, the reference
    string itself, the admin package link, and finally the order's own
    package name as the catalog name. When nothing identifies the product
    the resolver fails closed with MissingMappingError.
    """

    def __init__(self, catalog: CatalogService | None = None, cache_ttl_seconds: int | None = None) -> None:
        self.catalog = catalog or CatalogService()
        self.cache_ttl_seconds = (
            cache_ttl_seconds if cache_ttl_seconds is not None else get_settings().product_cache_ttl_seconds
        )
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = Lock()

    async def resolve(self, order: dict[str, Any]) -> ProductMapping:
        """Resolve the provider mapping for an order.

        Args:
            order: topup_orders row.

        Returns:
            ProductMapping: RechargeMapping or VoucherMapping.

        Raises:
            MissingMappingError: If no source identifies the product.
        """
        product_ref = order.get("external_product_ref")
        if not product_ref:
            product_ref = await self.catalog.find_provider_ref(
                order.get("game_name", ""), order.get("package_name", "")
            )
            if product_ref:
                logger.info("Resolved provider ref %s for order %s from catalog", product_ref, order.get("id"))

        if not product_ref:
            raise MissingMappingError(
                f"No provider product linked to '{order.get('game_name')}' / '{order.get('package_name')}'. "
                "Link the package to a provider product in admin, then retry."
            )

        record = await self._get_provider_product(product_ref)
        parsed = parse_product_ref(product_ref)
        fields = (record or {}).get("fields") or {}

        product_type = (
            _normalize_product_type((record or {}).get("product_type"))
            or (parsed.product_type if parsed else None)
            or "recharge"
        )
        catalog_name = (record or {}).get("product_name") or None

        if product_type == "voucher":
            sku_id = fields.get("sku_id") or (parsed.sku_id if parsed else None)
            if not sku_id:
                raise MissingMappingError(
                    f"Could not determine provider SKU for product: {product_ref}",
                    reference=product_ref,
                )
            return VoucherMapping(
                product_ref=product_ref,
                sku_id=str(sku_id),
                catalog_name=catalog_name or order.get("package_name", ""),
            )

        game_code = fields.get("game_code") or (parsed.game_code if parsed else None)

        if not game_code or not catalog_name:
            link = await self.catalog.get_package_link(product_ref)
            if link:
                game_code = game_code or link.get("provider_game_code")
                catalog_name = catalog_name or link.get("name")

        catalog_name = catalog_name or order.get("package_name")

        if not game_code:
            raise MissingMappingError(
                f"Could not determine game code for product: {product_ref}",
                reference=product_ref,
            )
        if not catalog_name:
            raise MissingMappingError(
                f"Could not determine catalogue name for product: {product_ref}",
                reference=product_ref,
            )

        return RechargeMapping(product_ref=product_ref, game_code=game_code, catalog_name=catalog_name)

    async def _get_provider_product(self, product_ref: str) -> ProviderProduct | None:
        with self._lock:
            entry = self._cache.get(product_ref)
            if entry and not entry.is_expired():
                return entry.value

        record = await self.catalog.get_provider_product(product_ref)
        if record and self.cache_ttl_seconds > 0:
            with self._lock:
                self._cache[product_ref] = _CacheEntry(
                    value=record,
                    expires_at=time.time() + self.cache_ttl_seconds,
                )
        return record

    def clear_cache(self) -> None:
        """Drop cached provider products (e.g. after a catalog sync)."""
        with self._lock:
            self._cache.clear()
