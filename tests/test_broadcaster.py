"""
Тесты WebSocket fan-out.

Тестирует:
- рассылку только открытым подписчикам
- изоляцию ошибок отправки
- однократную сериализацию payload
- ASGI-приложение listener'а (любой путь)
- поднятие/остановку listener'а и ошибку bind
"""

import json
import socket
import time

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from agroquote.config.services import WebSocketSettings
from agroquote.realtime.broadcaster import (
    EventBroadcaster,
    WebSocketListener,
    create_websocket_app,
    encode_payload,
)

from rabbit_fakes import FakeWebSocket


async def registered(broadcaster, **kwargs) -> FakeWebSocket:
    ws = FakeWebSocket(**kwargs)
    await broadcaster.register(ws)
    return ws


class TestBroadcast:
    """EventBroadcaster.broadcast."""

    @pytest.mark.asyncio
    async def test_only_open_subscribers_receive(self):
        broadcaster = EventBroadcaster()
        open_ws = await registered(broadcaster)
        handshaking = await registered(broadcaster)
        handshaking.client_state = WebSocketState.CONNECTING
        closing = await registered(broadcaster)
        closing.application_state = WebSocketState.DISCONNECTED

        delivered = await broadcaster.broadcast(b'{"type": "QUOTATION_CREATED"}')

        assert delivered == 1
        assert open_ws.sent == ['{"type": "QUOTATION_CREATED"}']
        assert handshaking.sent == []
        assert closing.sent == []

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_others(self):
        broadcaster = EventBroadcaster()
        broken = await registered(broadcaster, fail=True)
        healthy = await registered(broadcaster)

        delivered = await broadcaster.broadcast({"type": "HIGH_AREA_ALERT"})

        assert delivered == 1
        assert len(healthy.sent) == 1
        assert broadcaster.failed == 1
        assert broadcaster.subscriber_count == 1
        assert broken.sent == []

    @pytest.mark.asyncio
    async def test_payload_encoded_once(self):
        broadcaster = EventBroadcaster()
        subscribers = [await registered(broadcaster) for _ in range(3)]

        with patch(
            "agroquote.realtime.broadcaster.encode_payload", wraps=encode_payload
        ) as encoder:
            await broadcaster.broadcast({"type": "QUOTATION_CREATED", "quotationId": "q-1"})

        encoder.assert_called_once()
        assert len({ws.sent[0] for ws in subscribers}) == 1

    @pytest.mark.asyncio
    async def test_no_subscribers(self):
        broadcaster = EventBroadcaster()

        assert await broadcaster.broadcast(b"{}") == 0

    @pytest.mark.asyncio
    async def test_unregister_during_broadcast(self):
        """Изменение множества подписчиков во время рассылки безопасно."""
        broadcaster = EventBroadcaster()
        first = await registered(broadcaster)
        second = await registered(broadcaster)

        async def send_and_leave(data):
            first.sent.append(data)
            broadcaster.unregister(second)

        first.send_text = send_and_leave

        await broadcaster.broadcast(b"{}")

        assert first.sent == ["{}"]
        assert broadcaster.subscriber_count == 1

    def test_encode_payload_variants(self):
        assert encode_payload(b'{"a": 1}') == '{"a": 1}'
        assert encode_payload('{"a": 1}') == '{"a": 1}'
        assert json.loads(encode_payload({"text": "hectáreas"})) == {"text": "hectáreas"}


class TestWebSocketApp:
    """ASGI-приложение listener'а."""

    def _wait_for(self, predicate, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    @pytest.mark.parametrize("path", ["/", "/alerts", "/any/nested/path"])
    def test_client_registered_on_any_path(self, path):
        broadcaster = EventBroadcaster()
        client = TestClient(create_websocket_app(broadcaster))

        with client.websocket_connect(path):
            assert broadcaster.subscriber_count == 1

        assert self._wait_for(lambda: broadcaster.subscriber_count == 0)


class TestWebSocketListener:
    """Отдельный uvicorn-сервер."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        listener = WebSocketListener(
            EventBroadcaster(), WebSocketSettings(host="127.0.0.1", port=0)
        )

        assert await listener.start() is True
        assert listener.is_running is True

        await listener.stop()
        assert listener.is_running is False

    @pytest.mark.asyncio
    async def test_bind_failure_is_logged_not_raised(self):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupied.bind(("127.0.0.1", 0))
        occupied.listen(1)
        port = occupied.getsockname()[1]
        try:
            listener = WebSocketListener(
                EventBroadcaster(),
                WebSocketSettings(host="127.0.0.1", port=port),
                startup_timeout=2.0,
            )

            assert await listener.start() is False
            assert listener.is_running is False
            await listener.stop()
        finally:
            occupied.close()
