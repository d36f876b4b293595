"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("PROVIDER_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_ID", "")
os.environ.setdefault("RECONCILE_SWEEP_ENABLED", "false")

ORDER_ID = "660e8400-e29b-41d4-a716-446655440000"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> MagicMock:
    """Settings stand-in for services under test."""
    settings = MagicMock()
    settings.provider_name = "g2bulk"
    settings.provider_callback_url = "https://api.example.com/api/v1/webhooks/provider"
    settings.reconcile_stale_after_seconds = 300
    settings.reconcile_batch_size = 50
    settings.reconcile_request_delay_seconds = 0
    settings.voucher_empty_delivery_policy = "complete_flagged"
    settings.product_cache_ttl_seconds = 300
    return settings


@pytest.fixture
def sample_order() -> dict:
    """A paid recharge order."""
    return {
        "id": ORDER_ID,
        "user_id": "770e8400-e29b-41d4-a716-446655440000",
        "game_name": "Mobile Legends",
        "package_name": "86 Diamonds",
        "player_id": "123456789",
        "server_id": "2001",
        "amount": 1.5,
        "currency": "USD",
        "status": "paid",
        "status_message": None,
        "external_product_ref": "recharge_mlbb_86",
        "external_order_ref": None,
        "card_codes": None,
        "updated_at": "2026-01-01T00:00:00+00:00",
    }


@pytest.fixture
def mock_order_store() -> AsyncMock:
    """OrderStore with every method awaited."""
    return AsyncMock()


@pytest.fixture
def mock_notifier() -> MagicMock:
    """NotificationService whose notify() is synchronous like the real one."""
    return MagicMock()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def internal_headers() -> dict[str, str]:
    """Headers accepted by the internal fulfillment endpoints."""
    return {"X-Internal-Key": "test-internal-key"}
