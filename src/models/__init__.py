"""Database model type definitions."""

from src.models.fulfillment import (
    DeliveredItem,
    FulfillmentErrorKind,
    FulfillmentOutcome,
    ProviderResult,
)
from src.models.order import CardCode, OrderStatus, TopupOrder
from src.models.product import (
    CatalogEntry,
    ProductMapping,
    ProviderCredential,
    RechargeMapping,
    VoucherMapping,
)

__all__ = [
    "CardCode",
    "CatalogEntry",
    "DeliveredItem",
    "FulfillmentErrorKind",
    "FulfillmentOutcome",
    "OrderStatus",
    "ProductMapping",
    "ProviderCredential",
    "ProviderResult",
    "RechargeMapping",
    "TopupOrder",
    "VoucherMapping",
]
