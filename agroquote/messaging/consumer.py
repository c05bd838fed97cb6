"""
Consumer очереди `quotation_alerts` с ручным подтверждением.

Политика:
- успешный разбор + обработка -> ack (ровно один раз);
- payload не JSON или ошибка обработчика -> nack(requeue=False): сообщение
  отбрасывается, повторной доставки этому consumer'у нет (poison message);
- любой разобранный JSON без корректного алерта известного вида
  (неизвестный или отсутствующий `type`, неполные поля) логируется и
  считается обработанным (ack).

Consumer заново подписывается после каждого успешного (пере)подключения.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from agroquote.messaging.broker import BrokerConnectionManager
from agroquote.messaging.models import AlertKind, AlertMessage, DecodedAlert, UnknownAlert, decode_alert
from agroquote.shared.exceptions import AlertDispatchError, ChannelUnavailableError, MessageDecodeError
from agroquote.utility.logging_client import logger

COMPONENT = "consumer"

AlertHandler = Callable[[AlertMessage], Awaitable[None]]


async def handle_high_area_alert(alert: AlertMessage) -> None:
    """Крупная площадь: здесь подключаются email/SMS и т.п."""
    logger.warning(
        f"🚨 Processing high area alert for: {alert.client_name} "
        f"({alert.insured_area:.2f} ha, quotation {alert.quotation_id})",
        component=COMPONENT,
    )


async def handle_quotation_created(alert: AlertMessage) -> None:
    logger.info(
        f"📋 Processing quotation notification for: {alert.client_name}",
        component=COMPONENT,
    )


class AlertConsumer:
    """Consumer алертов поверх канала `BrokerConnectionManager`."""

    def __init__(
        self,
        connection: BrokerConnectionManager,
        handlers: Optional[Dict[AlertKind, AlertHandler]] = None,
    ) -> None:
        self._connection = connection
        self._handlers: Dict[AlertKind, AlertHandler] = {
            AlertKind.HIGH_AREA_ALERT: handle_high_area_alert,
            AlertKind.QUOTATION_CREATED: handle_quotation_created,
        }
        if handlers:
            self._handlers.update(handlers)

        self._queue: Any = None
        self._consumer_tag: Optional[str] = None
        self.arms = 0
        self.acked = 0
        self.rejected = 0

    @property
    def is_consuming(self) -> bool:
        return self._consumer_tag is not None and self._connection.is_connected

    def register_handler(self, kind: AlertKind, handler: AlertHandler) -> None:
        self._handlers[kind] = handler

    async def start(self) -> bool:
        """Подписаться на очередь текущего канала (noAck = false)."""
        try:
            channel = self._connection.require_channel()
        except ChannelUnavailableError as e:
            logger.error(f"❌ Consumer not started: {e}", component=COMPONENT)
            return False

        logger.info("🔄 Starting RabbitMQ consumer...", component=COMPONENT)
        queue = await channel.declare_queue(self._connection.topology.queue)
        self._consumer_tag = await queue.consume(self.on_message, no_ack=False)
        self._queue = queue
        self.arms += 1
        logger.info("✅ RabbitMQ consumer started", component=COMPONENT)
        return True

    async def stop(self) -> None:
        queue, tag = self._queue, self._consumer_tag
        self._queue = None
        self._consumer_tag = None
        if queue is not None and tag is not None:
            await queue.cancel(tag)
            logger.info("Consumer subscription cancelled", component=COMPONENT)

    async def dispatch(self, alert: DecodedAlert) -> None:
        if isinstance(alert, UnknownAlert):
            if alert.is_malformed_known_kind:
                logger.warning(f"⚠️ Malformed {alert.kind} message skipped", component=COMPONENT)
            else:
                logger.warning(f"❓ Unknown message type: {alert.kind!r}", component=COMPONENT)
            return

        handler = self._handlers.get(alert.kind)
        if handler is None:
            logger.warning(f"❓ No handler for message type: {alert.kind.value}", component=COMPONENT)
            return
        try:
            with logger.timed("alert_dispatch", component=COMPONENT).add_context(
                type=alert.kind.value, quotation_id=alert.quotation_id
            ):
                await handler(alert)
        except Exception as e:
            raise AlertDispatchError(
                "Alert handler failed",
                details={"type": alert.kind.value, "quotation_id": alert.quotation_id},
                original_error=e,
            ) from e

    async def on_message(self, message: Any) -> None:
        """Callback aio-pika для каждого доставленного сообщения."""
        try:
            alert = decode_alert(message.body)
            await self.dispatch(alert)
        except (MessageDecodeError, AlertDispatchError) as e:
            logger.error(f"❌ Error processing message: {e}", component=COMPONENT)
            await self._reject(message)
            return

        try:
            await message.ack()
        except Exception as e:
            logger.error(f"❌ Failed to ack message: {e}", component=COMPONENT)
            return
        self.acked += 1

    async def _reject(self, message: Any) -> None:
        try:
            await message.nack(requeue=False)
        except Exception as e:
            logger.error(f"❌ Failed to nack message: {e}", component=COMPONENT)
            return
        self.rejected += 1

    def status(self) -> Dict[str, Any]:
        return {
            "consuming": self.is_consuming,
            "arms": self.arms,
            "acked": self.acked,
            "rejected": self.rejected,
        }
