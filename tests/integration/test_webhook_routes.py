"""Integration tests for webhook API endpoints."""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

WEBHOOK_URL = "/api/v1/webhooks/provider"
SECRET = "test-webhook-secret"


def signed(body: bytes) -> dict[str, str]:
    return {"X-Signature": hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()}


class TestProviderWebhook:
    """Tests for POST /api/v1/webhooks/provider endpoint."""

    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_signed_callback_is_applied(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        """Test that a correctly signed callback reaches the reconciler."""
        mock_service_cls.return_value.handle_callback = AsyncMock(return_value=None)
        body = json.dumps(
            {
                "order_id": 98765,
                "status": "COMPLETED",
                "message": "Delivered",
                "remark": "order_id:660e8400-e29b-41d4-a716-446655440000",
                "game_code": "mlbb",
            }
        ).encode()

        response = client.post(WEBHOOK_URL, content=body, headers=signed(body))

        assert response.status_code == 200
        assert response.json()["status"] == "received"
        payload = mock_service_cls.return_value.handle_callback.await_args.args[0]
        assert payload["order_id"] == 98765
        assert payload["status"] == "COMPLETED"
        assert payload["remark"] == "order_id:660e8400-e29b-41d4-a716-446655440000"

    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_bearer_shared_secret_accepted(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        mock_service_cls.return_value.handle_callback = AsyncMock(return_value=None)

        response = client.post(
            WEBHOOK_URL,
            json={"order_id": 1, "status": "FAILED"},
            headers={"Authorization": f"Bearer {SECRET}"},
        )

        assert response.status_code == 200

    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_bad_signature_rejected_without_state_change(
        self, mock_service_cls: MagicMock, client: TestClient
    ) -> None:
        """Test that an unauthenticated callback never touches an order."""
        body = b'{"order_id": 1, "status": "COMPLETED"}'

        response = client.post(WEBHOOK_URL, content=body, headers={"X-Signature": "deadbeef"})

        assert response.status_code == 401
        mock_service_cls.assert_not_called()

    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_missing_credentials_rejected(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        response = client.post(WEBHOOK_URL, json={"order_id": 1, "status": "COMPLETED"})

        assert response.status_code == 401
        mock_service_cls.assert_not_called()

    @patch("src.api.routes.webhooks.get_settings")
    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_unconfigured_secret_rejects_everything(
        self, mock_service_cls: MagicMock, mock_settings: MagicMock, client: TestClient
    ) -> None:
        mock_settings.return_value.provider_webhook_secret = ""
        body = b'{"order_id": 1, "status": "COMPLETED"}'

        response = client.post(WEBHOOK_URL, content=body, headers={"Authorization": "Bearer "})

        assert response.status_code == 401
        mock_service_cls.assert_not_called()

    @patch("src.api.routes.webhooks.ReconciliationService")
    def test_malformed_body_returns_400(self, mock_service_cls: MagicMock, client: TestClient) -> None:
        body = b"not json"

        response = client.post(WEBHOOK_URL, content=body, headers=signed(body))

        assert response.status_code == 400
        mock_service_cls.assert_not_called()
