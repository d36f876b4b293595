"""Unit tests for CatalogService and CredentialService."""

from unittest.mock import MagicMock

import pytest

from src.models.product import CatalogEntry
from src.services.catalog_service import CatalogService, CredentialService


@pytest.fixture
def mock_supabase() -> MagicMock:
    """Create a mock Supabase client."""
    return MagicMock()


def response(data) -> MagicMock:
    result = MagicMock()
    result.data = data
    return result


class TestFindProviderRef:
    """Tests for find_provider_ref."""

    @pytest.mark.asyncio
    async def test_searches_packages_then_special_packages(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.select.return_value.eq.return_value.eq.return_value.limit.return_value
        chain.execute.side_effect = [response([]), response([{"external_product_ref": "recharge_mlbb_86"}])]

        ref = await CatalogService(client=mock_supabase).find_provider_ref("Mobile Legends", "86 Diamonds")

        assert ref == "recharge_mlbb_86"
        tables = [call.args[0] for call in mock_supabase.table.call_args_list]
        assert tables == ["packages", "special_packages"]

    @pytest.mark.asyncio
    async def test_blank_names_skip_lookup(self, mock_supabase: MagicMock) -> None:
        assert await CatalogService(client=mock_supabase).find_provider_ref("", "86 Diamonds") is None
        mock_supabase.table.assert_not_called()


class TestPackageLink:
    """Tests for get_package_link."""

    @pytest.mark.asyncio
    async def test_flattens_game_code(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value = response(
            [{"name": "86 Diamonds", "external_product_ref": "ref", "games": {"provider_game_code": "mlbb"}}]
        )

        link = await CatalogService(client=mock_supabase).get_package_link("ref")

        assert link == {"name": "86 Diamonds", "external_product_ref": "ref", "provider_game_code": "mlbb"}


class TestUpsertProviderProducts:
    """Tests for upsert_provider_products."""

    @pytest.mark.asyncio
    async def test_upserts_on_reference(self, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.upsert.return_value.execute.return_value = response([{}, {}])
        entries = [
            CatalogEntry("recharge_mlbb_86", "recharge", "Mobile Legends", "86 Diamonds", 1.42, fields={"game_code": "mlbb"}),
            CatalogEntry("voucher_555", "voucher", "Steam", "Steam $10", 10.5, fields={"sku_id": "555"}),
        ]

        written = await CatalogService(client=mock_supabase).upsert_provider_products(entries)

        assert written == 2
        rows = mock_supabase.table.return_value.upsert.call_args.args[0]
        assert rows[0]["provider_product_ref"] == "recharge_mlbb_86"
        assert mock_supabase.table.return_value.upsert.call_args.kwargs["on_conflict"] == "provider_product_ref"

    @pytest.mark.asyncio
    async def test_empty_is_noop(self, mock_supabase: MagicMock) -> None:
        assert await CatalogService(client=mock_supabase).upsert_provider_products([]) == 0
        mock_supabase.table.assert_not_called()


class TestCredentialService:
    """Tests for get_credential."""

    @pytest.mark.asyncio
    async def test_enabled_credential(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
        chain.execute.return_value = response({"api_name": "g2bulk", "api_secret": "key", "is_enabled": True})

        credential = await CredentialService(client=mock_supabase).get_credential("g2bulk")

        assert credential.is_usable is True
        assert credential.api_key == "key"

    @pytest.mark.asyncio
    async def test_disabled_credential_not_usable(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
        chain.execute.return_value = response({"api_name": "g2bulk", "api_secret": "key", "is_enabled": False})

        credential = await CredentialService(client=mock_supabase).get_credential("g2bulk")

        assert credential.is_usable is False

    @pytest.mark.asyncio
    async def test_missing_row(self, mock_supabase: MagicMock) -> None:
        chain = mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value
        chain.execute.return_value = None

        assert await CredentialService(client=mock_supabase).get_credential("g2bulk") is None
