"""
Публикация алертов по котировкам.

Порядок отправки фиксирован:
1. exchange `quotation_events` с routing key `quotation.created`
   (брокер кладёт копию в `quotation_alerts`);
2. WebSocket broadcast;
3. только для HIGH_AREA_ALERT ещё одна копия напрямую в очередь.

Для HIGH_AREA_ALERT в очереди оказывается две записи (routed + direct).
Это наблюдаемое поведение, consumer должен быть к нему готов.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from agroquote.config.constants import DEFAULT_LOCALE, HIGH_AREA_THRESHOLD_HECTARES
from agroquote.messaging.broker import BrokerConnectionManager
from agroquote.messaging.models import AlertMessage, QuotationEvent
from agroquote.realtime.broadcaster import EventBroadcaster
from agroquote.utility.logging_client import logger

COMPONENT = "publisher"

CONTENT_TYPE = "application/json"


class AlertPublisher:
    """
    Publisher алертов: брокер + WebSocket.

    Примечание:
    - Ошибки никогда не пробрасываются вызывающему коду (fire-and-forget
      относительно HTTP-запроса, создавшего котировку).
    - Канал берётся у `BrokerConnectionManager` на каждый вызов.
    """

    def __init__(
        self,
        connection: BrokerConnectionManager,
        broadcaster: EventBroadcaster,
        *,
        locale: str = DEFAULT_LOCALE,
        threshold: float = HIGH_AREA_THRESHOLD_HECTARES,
    ) -> None:
        self._connection = connection
        self._broadcaster = broadcaster
        self.locale = locale
        self.threshold = threshold
        self.published = 0
        self.skipped = 0
        self.failed = 0

    def build_message(self, event: QuotationEvent) -> AlertMessage:
        return AlertMessage.from_event(event, locale=self.locale, threshold=self.threshold)

    async def publish_quotation_alert(self, event: QuotationEvent) -> Optional[AlertMessage]:
        """
        Классифицировать событие и отправить алерт.

        Returns:
            Отправленный AlertMessage или None, если публикация пропущена/упала.
        """
        channel = self._connection.channel
        if channel is None:
            self.skipped += 1
            logger.error(
                f"❌ RabbitMQ channel not available, alert for quotation "
                f"{event.quotation_id} skipped (state: {self._connection.state.value})",
                component=COMPONENT,
            )
            return None

        topology = self._connection.topology
        try:
            alert = self.build_message(event)
            body = alert.to_wire()

            await channel.publish(
                body,
                exchange=topology.exchange_name,
                routing_key=topology.routing_key,
                persist=True,
                content_type=CONTENT_TYPE,
            )
            if alert.is_high_area:
                logger.warning(f"🚨 High area alert sent: {alert.message}", component=COMPONENT)
            else:
                logger.info(f"📋 Quotation notification sent: {alert.message}", component=COMPONENT)

            await self._broadcaster.broadcast(body)

            if alert.is_high_area:
                await channel.publish(
                    body,
                    queue=topology.queue_name,
                    persist=True,
                    content_type=CONTENT_TYPE,
                )
        except Exception as e:
            self.failed += 1
            logger.error(f"❌ Failed to send quotation alert: {e}", component=COMPONENT)
            return None

        self.published += 1
        return alert

    def schedule_quotation_alert(self, event: QuotationEvent) -> asyncio.Task:
        """Запланировать публикацию, не блокируя HTTP-запрос."""
        return asyncio.get_running_loop().create_task(self.publish_quotation_alert(event))

    def status(self) -> Dict[str, Any]:
        return {
            "published": self.published,
            "skipped": self.skipped,
            "failed": self.failed,
            "locale": self.locale,
            "threshold": self.threshold,
        }
