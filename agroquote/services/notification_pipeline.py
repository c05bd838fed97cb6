"""
Сборка пайплайна уведомлений о котировках.

Один объект владеет всеми компонентами и их жизненным циклом:
- BrokerConnectionManager (соединение, топология, переподключение)
- EventBroadcaster + WebSocketListener (поднимается один раз)
- AlertPublisher (exchange -> broadcast -> direct enqueue)
- AlertConsumer (перевзводится после каждого подключения)

Пайплайн создаётся в lifespan FastAPI и передаётся в роуты через
зависимость, а не импортируется как глобальное состояние.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from agroquote.config.settings import Settings, settings as default_settings
from agroquote.messaging.broker import BrokerConnectionManager
from agroquote.messaging.consumer import AlertConsumer
from agroquote.messaging.models import QuotationEvent
from agroquote.messaging.publisher import AlertPublisher
from agroquote.realtime.broadcaster import EventBroadcaster, WebSocketListener
from agroquote.services.shutdown_manager import ShutdownManager
from agroquote.utility.logging_client import logger


class NotificationPipeline:
    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        connection: Optional[BrokerConnectionManager] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        listener: Optional[WebSocketListener] = None,
        consume: bool = True,
        serve_websocket: Optional[bool] = None,
    ) -> None:
        cfg = config or default_settings
        self.connection = connection or BrokerConnectionManager(cfg.broker)
        self.broadcaster = broadcaster or EventBroadcaster()

        if serve_websocket is None:
            serve_websocket = cfg.websocket.enabled
        if listener is None and serve_websocket:
            listener = WebSocketListener(self.broadcaster, cfg.websocket)
        self.listener = listener

        self.publisher = AlertPublisher(
            self.connection,
            self.broadcaster,
            locale=cfg.app.locale,
            threshold=cfg.alerts.high_area_threshold,
        )
        self.consumer: Optional[AlertConsumer] = None
        if consume:
            self.consumer = AlertConsumer(self.connection)
            self.connection.add_connected_listener(self.consumer.start)
            self.connection.add_channel_closing_listener(self.consumer.stop)

        if self.listener is not None:
            self.connection.attach_listener(self.listener)

        self.shutdown = ShutdownManager()
        self.shutdown.register_cleanup(self.connection.close)
        self._started = False

    async def start(self) -> None:
        """Поднять WebSocket listener (один раз), затем подключиться к брокеру."""
        if self._started:
            return
        self._started = True
        if self.listener is not None:
            await self.listener.start()
        await self.connection.connect()

    def notify_quotation_created(self, event: QuotationEvent) -> Optional[asyncio.Task]:
        """
        Точка входа для workflow создания котировки.

        Только планирует публикацию; никогда не бросает исключение в вызывающий код.
        """
        if self.shutdown.is_shutting_down:
            logger.warning(
                f"Shutdown in progress, alert for quotation {event.quotation_id} dropped",
                component="publisher",
            )
            return None
        try:
            return self.shutdown.track(self.publisher.schedule_quotation_alert(event))
        except Exception as e:
            logger.error(f"❌ Failed to schedule quotation alert: {e}", component="publisher")
            return None

    async def close(self) -> None:
        await self.shutdown.initiate_shutdown()

    def status(self) -> Dict[str, Any]:
        return {
            "broker": self.connection.status(),
            "websocket": {
                "listening": bool(self.listener and self.listener.is_running),
                **self.broadcaster.status(),
            },
            "publisher": {**self.publisher.status(), "in_flight": self.shutdown.in_flight},
            "consumer": self.consumer.status() if self.consumer else None,
        }
