"""Unit tests for the provider API client."""

import json

import httpx
import pytest

from src.core.provider import ProviderClient, ProviderTransportError, create_provider_client
from src.models.product import ProviderCredential

BASE_URL = "https://provider.test/v1"


def make_client(handler) -> ProviderClient:
    return ProviderClient(
        api_key="test-key",
        base_url=BASE_URL,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestPlaceRechargeOrder:
    """Tests for place_recharge_order."""

    @pytest.mark.asyncio
    async def test_sends_order_with_remark_and_callback(self) -> None:
        """Test request shape and accepted response parsing."""
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["api_key"] = request.headers.get("X-API-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "order": {"order_id": 98765, "status": "PENDING"}})

        client = make_client(handler)
        result = await client.place_recharge_order(
            game_code="mlbb",
            catalog_name="86 Diamonds",
            player_id="123456789",
            server_id="2001",
            idempotency_token="order_id:abc",
            callback_url="https://api.example.com/api/v1/webhooks/provider",
        )

        assert seen["url"] == f"{BASE_URL}/games/mlbb/order"
        assert seen["api_key"] == "test-key"
        assert seen["body"] == {
            "catalogue_name": "86 Diamonds",
            "player_id": "123456789",
            "server_id": "2001",
            "remark": "order_id:abc",
            "callback_url": "https://api.example.com/api/v1/webhooks/provider",
        }
        assert result.accepted is True
        assert result.external_order_ref == "98765"
        assert result.provider_status == "PENDING"

    @pytest.mark.asyncio
    async def test_omits_empty_server_id(self) -> None:
        bodies: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "order": {"order_id": 1, "status": "COMPLETED"}})

        await make_client(handler).place_recharge_order("pubgm", "60 UC", "5555", None, "order_id:x", "https://cb")

        assert "server_id" not in bodies[0]

    @pytest.mark.asyncio
    async def test_rejection_keeps_provider_message(self) -> None:
        """Test that a well-formed rejection is not a transport error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"success": False, "message": "Invalid player ID"})

        result = await make_client(handler).place_recharge_order("mlbb", "86 Diamonds", "1", None, "t", "cb")

        assert result.accepted is False
        assert result.transport_error is False
        assert result.error_message == "Invalid player ID"

    @pytest.mark.asyncio
    async def test_nested_detail_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"detail": {"message": "Catalogue not found"}})

        result = await make_client(handler).place_recharge_order("mlbb", "X", "1", None, "t", "cb")

        assert result.error_message == "Catalogue not found"

    @pytest.mark.asyncio
    async def test_network_failure_is_transport_error(self) -> None:
        """Test that a connection failure is reported as transport and not retried."""
        calls: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused")

        result = await make_client(handler).place_recharge_order("mlbb", "86 Diamonds", "1", None, "t", "cb")

        assert result.accepted is False
        assert result.transport_error is True
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_body_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>bad gateway</html>")

        result = await make_client(handler).place_recharge_order("mlbb", "86 Diamonds", "1", None, "t", "cb")

        assert result.transport_error is True
        assert "Malformed" in result.error_message

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"message": "maintenance"})

        result = await make_client(handler).place_recharge_order("mlbb", "86 Diamonds", "1", None, "t", "cb")

        assert result.transport_error is True


class TestPurchaseVoucher:
    """Tests for purchase_voucher."""

    @pytest.mark.asyncio
    async def test_returns_delivered_codes(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/products/555/purchase"
            assert json.loads(request.content) == {"quantity": 1}
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "order_id": 4321,
                    "delivery_items": [{"code": "AAAA-BBBB", "serial": "S1", "expire": "2027-01-01"}, "CCCC-DDDD"],
                },
            )

        result = await make_client(handler).purchase_voucher("555")

        assert result.accepted is True
        assert result.external_order_ref == "4321"
        assert [item.code for item in result.delivered_items] == ["AAAA-BBBB", "CCCC-DDDD"]
        assert result.delivered_items[0].serial == "S1"

    @pytest.mark.asyncio
    async def test_out_of_stock_rejection(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "message": "Out of stock"})

        result = await make_client(handler).purchase_voucher("555")

        assert result.accepted is False
        assert result.error_message == "Out of stock"


class TestCheckOrderStatus:
    """Tests for check_order_status."""

    @pytest.mark.asyncio
    async def test_sends_numeric_order_id(self) -> None:
        bodies: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "order": {"status": "COMPLETED", "message": "ok"}})

        result = await make_client(handler).check_order_status("mlbb", "98765")

        assert bodies[0] == {"order_id": 98765, "game": "mlbb"}
        assert result.provider_status == "COMPLETED"
        assert result.external_order_ref == "98765"

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self) -> None:
        """Test that read-only status checks are retried."""
        attempts: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("timed out")
            return httpx.Response(200, json={"success": True, "order": {"status": "PROCESSING"}})

        result = await make_client(handler).check_order_status("mlbb", "1")

        assert len(attempts) == 2
        assert result.accepted is True
        assert result.provider_status == "PROCESSING"


class TestCatalog:
    """Tests for get_balance and list_catalog."""

    @pytest.mark.asyncio
    async def test_list_catalog_builds_references(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/v1/games":
                return httpx.Response(200, json={"games": [{"code": "mlbb", "name": "Mobile Legends"}]})
            if path == "/v1/games/mlbb/catalogue":
                return httpx.Response(200, json={"catalogues": [{"id": 86, "name": "86 Diamonds", "amount": 1.42}]})
            if path == "/v1/products":
                return httpx.Response(
                    200,
                    json={"products": [{"id": 555, "title": "Steam $10", "unit_price": 10.5, "category_title": "Steam", "stock": 4}]},
                )
            return httpx.Response(404, json={"message": "not found"})

        entries = await make_client(handler).list_catalog()

        assert [e.provider_product_ref for e in entries] == ["recharge_mlbb_86", "voucher_555"]
        assert entries[0].fields == {"game_code": "mlbb"}
        assert entries[0].product_name == "86 Diamonds"
        assert entries[1].fields == {"sku_id": "555", "stock": 4}
        assert entries[1].to_row()["product_type"] == "voucher"

    @pytest.mark.asyncio
    async def test_get_balance_raises_when_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, content=b"")

        with pytest.raises(ProviderTransportError):
            await make_client(handler).get_balance()


class TestCreateProviderClient:
    """Tests for create_provider_client."""

    def test_requires_usable_credential(self) -> None:
        with pytest.raises(ValueError):
            create_provider_client(ProviderCredential(provider_name="g2bulk", api_key="k", enabled=False))
        with pytest.raises(ValueError):
            create_provider_client(ProviderCredential(provider_name="g2bulk", api_key=None, enabled=True))

    def test_builds_client(self) -> None:
        client = create_provider_client(ProviderCredential(provider_name="g2bulk", api_key="k", enabled=True))
        assert isinstance(client, ProviderClient)
