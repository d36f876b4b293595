"""Unit tests for the Telegram transport."""

import json

import httpx
import pytest

from src.core.telegram import TelegramError, TelegramTransport


def make_transport(handler, bot_token: str = "123:abc", chat_id: str = "-100") -> TelegramTransport:
    return TelegramTransport(bot_token=bot_token, chat_id=chat_id, transport=httpx.MockTransport(handler))


class TestTelegramTransport:
    """Tests for TelegramTransport.send."""

    @pytest.mark.asyncio
    async def test_sends_html_message(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True, "result": {}})

        await make_transport(handler).send("<b>Order Completed</b>")

        assert len(requests) == 1
        assert requests[0].url.path == "/bot123:abc/sendMessage"
        assert json.loads(requests[0].content) == {
            "chat_id": "-100",
            "text": "<b>Order Completed</b>",
            "parse_mode": "HTML",
        }

    @pytest.mark.asyncio
    async def test_skips_when_not_configured(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler, bot_token="", chat_id="")
        await transport.send("hello")

        assert transport.is_configured is False
        assert requests == []

    @pytest.mark.asyncio
    async def test_api_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})

        with pytest.raises(TelegramError, match="chat not found"):
            await make_transport(handler).send("hello")
