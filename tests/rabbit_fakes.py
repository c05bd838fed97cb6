"""
In-memory замена RabbitMQ для тестов пайплайна.

FakeRabbitServer хранит exchanges/queues между "подключениями" (как живой
брокер с durable очередями), FakeBroker повторяет ту часть API FastStream
RabbitBroker, которой пользуется BrokerConnectionManager.
"""

import asyncio
from typing import Any, Dict, List, Optional

from starlette.websockets import WebSocketState


class FakeCallbacks:
    def __init__(self):
        self.callbacks: List[Any] = []

    def add(self, callback):
        self.callbacks.append(callback)

    def fire(self, sender, exc=None):
        for callback in list(self.callbacks):
            callback(sender, exc)


class FakeConnection:
    def __init__(self):
        self.close_callbacks = FakeCallbacks()

    def drop(self, exc: Optional[BaseException] = None):
        """Имитация падения соединения на стороне брокера."""
        self.close_callbacks.fire(self, exc)


class FakeExchange:
    def __init__(self, name, type_, durable):
        self.name = name
        self.type = type_
        self.durable = durable


class FakeIncomingMessage:
    def __init__(self, body: bytes, queue: "FakeQueue"):
        self.body = body
        self._queue = queue
        self.acks = 0
        self.nacks: List[bool] = []

    async def ack(self):
        self.acks += 1

    async def nack(self, requeue: bool = True):
        self.nacks.append(requeue)
        if requeue:
            self._queue.messages.append(self.body)


class FakeQueue:
    def __init__(self, name, durable):
        self.name = name
        self.durable = durable
        self.messages: List[bytes] = []
        self.delivered: List[FakeIncomingMessage] = []
        self.bindings: List[tuple] = []
        self.consumers: Dict[str, tuple] = {}
        self._tags = 0

    async def bind(self, exchange, routing_key=""):
        binding = (exchange.name, routing_key)
        if binding not in self.bindings:
            self.bindings.append(binding)

    async def consume(self, callback, no_ack=False):
        self._tags += 1
        tag = f"ctag-{self._tags}"
        self.consumers[tag] = (callback, no_ack)
        return tag

    async def cancel(self, tag):
        self.consumers.pop(tag, None)

    async def deliver_all(self) -> List[FakeIncomingMessage]:
        """Отдать все сообщения последнему активному consumer'у."""
        callback, _ = list(self.consumers.values())[-1]
        handled = []
        while self.messages:
            message = FakeIncomingMessage(self.messages.pop(0), self)
            self.delivered.append(message)
            handled.append(message)
            await callback(message)
        return handled


class FakeBroker:
    def __init__(self, server: "FakeRabbitServer", url: str, **options):
        self.server = server
        self.url = url
        self.options = options
        self.connection = FakeConnection()
        self.closed = False
        self.published: List[Dict[str, Any]] = []

    async def connect(self):
        if self.server.fail_connects > 0:
            self.server.fail_connects -= 1
            raise ConnectionError("ECONNREFUSED")
        return self.connection

    async def declare_exchange(self, exchange):
        return self.server.exchanges.setdefault(
            exchange.name, FakeExchange(exchange.name, exchange.type, exchange.durable)
        )

    async def declare_queue(self, queue):
        return self.server.queues.setdefault(queue.name, FakeQueue(queue.name, queue.durable))

    async def publish(self, message, queue="", exchange=None, *, routing_key="", **kwargs):
        record = {"body": message, "queue": queue, "exchange": exchange, "routing_key": routing_key, **kwargs}
        self.published.append(record)
        self.server.journal.append(("exchange" if exchange else "queue", message))
        if exchange:
            for q in self.server.queues.values():
                if (exchange, routing_key) in q.bindings:
                    q.messages.append(message)
        elif queue:
            self.server.queues[queue].messages.append(message)

    async def stop(self):
        self.closed = True


class FakeRabbitServer:
    def __init__(self, fail_connects: int = 0):
        self.fail_connects = fail_connects
        self.exchanges: Dict[str, FakeExchange] = {}
        self.queues: Dict[str, FakeQueue] = {}
        self.brokers: List[FakeBroker] = []
        self.journal: List[tuple] = []

    def factory(self, url: str, **options) -> FakeBroker:
        broker = FakeBroker(self, url, **options)
        self.brokers.append(broker)
        return broker

    @property
    def current(self) -> FakeBroker:
        return self.brokers[-1]


class FakeWebSocket:
    """Минимальный WebSocket со state-полями Starlette."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: List[str] = []
        self.fail = fail

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data: str):
        if self.fail:
            raise RuntimeError("broken pipe")
        self.sent.append(data)


def make_sleep_recorder():
    """asyncio.sleep без ожидания; запоминает запрошенные задержки."""
    calls: List[float] = []

    async def fake_sleep(delay):
        calls.append(delay)
        await asyncio.sleep(0)

    fake_sleep.calls = calls
    return fake_sleep
