"""
WebSocket fan-out алертов.

Listener поднимается один раз при старте сервиса и живёт независимо от
переподключений к RabbitMQ. Доставка at-most-once: без очереди и replay для
клиентов, которые ещё в handshake или подключились позже.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Dict, Optional, Set, Union

import uvicorn
from fastapi import FastAPI, WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from agroquote.config.services import WebSocketSettings
from agroquote.utility.logging_client import logger

COMPONENT = "websocket"

Payload = Union[bytes, str, BaseModel, Dict[str, Any]]


def encode_payload(payload: Payload) -> str:
    """Wire-форма (JSON-текст) для отправки в WebSocket."""
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    if isinstance(payload, str):
        return payload
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(by_alias=True)
    return json.dumps(payload, ensure_ascii=False, default=str)


class EventBroadcaster:
    """Живые WebSocket-подписчики и best-effort рассылка."""

    def __init__(self) -> None:
        self._subscribers: Set[WebSocket] = set()
        self.delivered = 0
        self.failed = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def register(self, websocket: WebSocket) -> None:
        # В множество до accept: broadcast всё равно пропустит сокет, пока он не открыт
        self._subscribers.add(websocket)
        try:
            await websocket.accept()
        except Exception:
            self._subscribers.discard(websocket)
            raise
        logger.info(
            f"🔌 WebSocket client connected (subscribers: {self.subscriber_count})",
            component=COMPONENT,
        )

    def unregister(self, websocket: WebSocket) -> None:
        if websocket in self._subscribers:
            self._subscribers.discard(websocket)
            logger.info(
                f"🔌 WebSocket client disconnected (subscribers: {self.subscriber_count})",
                component=COMPONENT,
            )

    @staticmethod
    def is_open(websocket: WebSocket) -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def broadcast(self, payload: Payload) -> int:
        """
        Разослать payload всем открытым подписчикам.

        Сериализация выполняется один раз. Ошибка отправки одному клиенту
        логируется и не мешает остальным.

        Returns:
            Количество успешных доставок.
        """
        message = encode_payload(payload)
        targets = [ws for ws in list(self._subscribers) if self.is_open(ws)]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(ws.send_text(message) for ws in targets), return_exceptions=True
        )

        delivered = 0
        for ws, result in zip(targets, results):
            if isinstance(result, BaseException):
                self.failed += 1
                self._subscribers.discard(ws)
                logger.error(f"❌ Failed to send WebSocket message: {result}", component=COMPONENT)
            else:
                delivered += 1
        self.delivered += delivered
        return delivered

    def status(self) -> Dict[str, Any]:
        return {
            "subscribers": self.subscriber_count,
            "delivered": self.delivered,
            "failed": self.failed,
        }


def create_websocket_app(broadcaster: EventBroadcaster) -> FastAPI:
    """
    ASGI-приложение listener'а: любой путь, только server -> client.

    Входящие кадры читаются и игнорируются (нужно, чтобы заметить disconnect).
    """
    ws_app = FastAPI(
        title="agroquote-ws",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @ws_app.websocket("/")
    @ws_app.websocket("/{path:path}")
    async def subscribe(websocket: WebSocket, path: str = "") -> None:
        await broadcaster.register(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except Exception as e:
            logger.error(f"❌ WebSocket error: {e}", component=COMPONENT)
        finally:
            broadcaster.unregister(websocket)

    return ws_app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn без собственных обработчиков сигналов (ими владеет основной процесс)."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class WebSocketListener:
    """
    Отдельный uvicorn-сервер для WebSocket (порт 4001 по умолчанию).

    Создаётся один раз; переподключения к брокеру его не трогают.
    Ошибка bind логируется, повторных попыток нет.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        ws_settings: WebSocketSettings,
        startup_timeout: float = 5.0,
    ) -> None:
        self.broadcaster = broadcaster
        self._settings = ws_settings
        self._startup_timeout = startup_timeout
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return (
            self._server is not None
            and self._server.started
            and self._task is not None
            and not self._task.done()
        )

    @property
    def address(self) -> str:
        return f"ws://{self._settings.host}:{self._settings.port}"

    async def start(self) -> bool:
        if self._task is not None:
            return self.is_running

        config = uvicorn.Config(
            create_websocket_app(self.broadcaster),
            host=self._settings.host,
            port=self._settings.port,
            lifespan="off",
            log_level="warning",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._serve())

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._startup_timeout
        while not self._server.started and not self._task.done() and loop.time() < deadline:
            await asyncio.sleep(0.05)

        if self.is_running:
            logger.info(f"✅ WebSocket server started on {self.address}", component=COMPONENT)
            return True
        return False

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except SystemExit:
            # uvicorn завершает процесс через sys.exit(1), если порт занят
            logger.error(
                f"❌ Failed to initialize WebSocket server on {self.address} (bind failed)",
                component=COMPONENT,
            )
        except OSError as e:
            logger.error(f"❌ WebSocket server error: {e}", component=COMPONENT)

    async def stop(self, timeout: float = 5.0) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            self._task.cancel()
            logger.warning("WebSocket server did not stop in time, cancelled", component=COMPONENT)
        finally:
            self._server = None
            self._task = None
        logger.info("✅ WebSocket server closed", component=COMPONENT)


__all__ = [
    "EventBroadcaster",
    "WebSocketListener",
    "create_websocket_app",
    "encode_payload",
]
