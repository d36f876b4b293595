"""Read access to the storefront catalog and provider credentials."""

import logging
from typing import Any

from supabase import Client

from src.core.supabase import get_supabase_client
from src.models.product import CatalogEntry, PackageLink, ProviderCredential, ProviderProduct

logger = logging.getLogger(__name__)

PACKAGE_TABLES = ("packages", "special_packages")


class CatalogService:
    """Queries the admin-managed catalog and the synced provider products."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def find_provider_ref(self, game_name: str, package_name: str) -> str | None:
        """Find the provider reference linked to a storefront package.

        Regular packages are searched before special packages.

        Args:
            game_name: Game display name.
            package_name: Package display name.

        Returns:
            str | None: The linked provider reference, if any.
        """
        if not game_name or not package_name:
            return None

        for table in PACKAGE_TABLES:
            response = (
                self.client.table(table)
                .select("external_product_ref, games!inner(name)")
                .eq("name", package_name)
                .eq("games.name", game_name)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            if rows and rows[0].get("external_product_ref"):
                logger.debug("Found provider ref in %s for %s / %s", table, game_name, package_name)
                return rows[0]["external_product_ref"]

        return None

    async def get_provider_product(self, product_ref: str) -> ProviderProduct | None:
        """Get the pre-synced provider product for a reference."""
        response = (
            self.client.table("provider_products")
            .select("provider_product_ref, product_type, product_name, game_name, fields")
            .eq("provider_product_ref", product_ref)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return rows[0] if rows else None

    async def get_package_link(self, product_ref: str) -> PackageLink | None:
        """Get the admin package (and its game's provider code) linked to a reference."""
        response = (
            self.client.table("packages")
            .select("name, external_product_ref, games!inner(provider_game_code)")
            .eq("external_product_ref", product_ref)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None

        row = rows[0]
        game = row.get("games") or {}
        return {
            "name": row.get("name"),
            "external_product_ref": row.get("external_product_ref"),
            "provider_game_code": game.get("provider_game_code"),
        }

    async def upsert_provider_products(self, entries: list[CatalogEntry]) -> int:
        """Insert or update synced provider products.

        Returns:
            int: Number of rows written.
        """
        if not entries:
            return 0
        rows: list[dict[str, Any]] = [entry.to_row() for entry in entries]
        response = (
            self.client.table("provider_products")
            .upsert(rows, on_conflict="provider_product_ref")
            .execute()
        )
        return len(response.data) if response.data else 0


class CredentialService:
    """Looks up provider API credentials from api_configurations."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def get_credential(self, provider_name: str) -> ProviderCredential | None:
        """Get the credential for a provider.

        Returns:
            ProviderCredential | None: None when no configuration row exists.
        """
        response = (
            self.client.table("api_configurations")
            .select("api_name, api_secret, is_enabled")
            .eq("api_name", provider_name)
            .maybe_single()
            .execute()
        )
        row = response.data if response and response.data else None
        if not row:
            return None

        return ProviderCredential(
            provider_name=provider_name,
            api_key=row.get("api_secret"),
            enabled=bool(row.get("is_enabled")),
        )
