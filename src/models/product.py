"""Provider product linkage types."""

from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

ProductType = Literal["recharge", "voucher"]


@dataclass(frozen=True)
class RechargeMapping:
    """Direct top-up into a player's game account."""

    product_ref: str
    game_code: str
    catalog_name: str

    @property
    def product_type(self) -> ProductType:
        return "recharge"


@dataclass(frozen=True)
class VoucherMapping:
    """Pre-stocked code purchased and delivered immediately."""

    product_ref: str
    sku_id: str
    catalog_name: str

    @property
    def product_type(self) -> ProductType:
        return "voucher"


ProductMapping = RechargeMapping | VoucherMapping


class ProviderProduct(TypedDict, total=False):
    """provider_products table row (pre-synced provider catalog)."""

    provider_product_ref: str
    product_type: str
    product_name: str
    game_name: str
    fields: dict[str, Any]
    price: float
    currency: str


class PackageLink(TypedDict, total=False):
    """Admin package linked to a provider reference."""

    name: str
    external_product_ref: str | None
    provider_game_code: str | None


@dataclass
class ProviderCredential:
    """Provider API credential from api_configurations."""

    provider_name: str
    api_key: str | None
    enabled: bool = False

    @property
    def is_usable(self) -> bool:
        """Credential is present, enabled and carries a key."""
        return self.enabled and bool(self.api_key)


@dataclass
class CatalogEntry:
    """A purchasable item reported by the provider's catalog endpoints."""

    provider_product_ref: str
    product_type: ProductType
    game_name: str
    product_name: str
    price: float
    currency: str = "USD"
    fields: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        """Build the provider_products upsert row."""
        return {
            "provider_product_ref": self.provider_product_ref,
            "product_type": self.product_type,
            "game_name": self.game_name,
            "product_name": self.product_name,
            "price": self.price,
            "currency": self.currency,
            "fields": self.fields,
        }
