"""
RabbitMQ: управление соединением, топологией и переподключением (FastStream).

Важно:
- Единственный владелец соединения: `BrokerConnectionManager`. Publisher и
  Consumer получают broker-handle (канал) только пока состояние CONNECTED.
- Топология (topic exchange, durable очередь, binding) объявляется заново при
  каждом успешном подключении; повторное объявление безопасно.
- Сигналы закрытия/ошибки соединения и неудачное первичное подключение идут
  по одному пути: не более одного отложенного переподключения одновременно.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from faststream.rabbit import ExchangeType, RabbitBroker, RabbitExchange, RabbitQueue
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential,
    wait_fixed,
    wait_random,
)

from agroquote.config.constants import (
    ALERTS_QUEUE,
    QUOTATION_CREATED_ROUTING_KEY,
    QUOTATION_EXCHANGE,
    RECONNECT_DELAY_SECONDS,
    RECONNECT_MAX_DELAY_SECONDS,
    ReconnectStrategy,
)
from agroquote.config.services import BrokerSettings
from agroquote.shared.exceptions import BrokerConnectionError, ChannelUnavailableError
from agroquote.utility.logging_client import logger

COMPONENT = "rabbitmq"

Hook = Callable[[], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(frozen=True)
class BrokerTopology:
    """Topic exchange -> durable очередь по фиксированному routing key."""

    exchange_name: str = QUOTATION_EXCHANGE
    queue_name: str = ALERTS_QUEUE
    routing_key: str = QUOTATION_CREATED_ROUTING_KEY

    @classmethod
    def from_settings(cls, broker_settings: BrokerSettings) -> "BrokerTopology":
        return cls(
            exchange_name=broker_settings.exchange,
            queue_name=broker_settings.queue,
            routing_key=broker_settings.routing_key,
        )

    @property
    def exchange(self) -> RabbitExchange:
        return RabbitExchange(self.exchange_name, type=ExchangeType.TOPIC, durable=True)

    @property
    def queue(self) -> RabbitQueue:
        return RabbitQueue(self.queue_name, durable=True, routing_key=self.routing_key)

    async def declare(self, broker: RabbitBroker) -> Any:
        """Объявить exchange, очередь и binding. Возвращает объявленную очередь."""
        exchange = await broker.declare_exchange(self.exchange)
        queue = await broker.declare_queue(self.queue)
        await queue.bind(exchange, routing_key=self.routing_key)
        return queue


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Политика переподключения.

    По умолчанию: фиксированная задержка 5 с, без лимита попыток, без jitter.
    """

    delay: float = RECONNECT_DELAY_SECONDS
    strategy: ReconnectStrategy = ReconnectStrategy.FIXED
    max_delay: float = RECONNECT_MAX_DELAY_SECONDS
    jitter: float = 0.0
    max_attempts: Optional[int] = None

    @classmethod
    def from_settings(cls, broker_settings: BrokerSettings) -> "ReconnectPolicy":
        return cls(
            delay=broker_settings.reconnect_delay,
            strategy=ReconnectStrategy(broker_settings.reconnect_strategy),
            max_delay=broker_settings.reconnect_max_delay,
            jitter=broker_settings.reconnect_jitter,
            max_attempts=broker_settings.max_reconnect_attempts,
        )

    def wait_strategy(self):
        if self.strategy is ReconnectStrategy.EXPONENTIAL:
            wait = wait_exponential(multiplier=self.delay, min=self.delay, max=self.max_delay)
        else:
            wait = wait_fixed(self.delay)
        if self.jitter > 0:
            wait = wait + wait_random(0, self.delay * self.jitter)
        return wait

    def stop_strategy(self):
        if self.max_attempts is None:
            return stop_never
        return stop_after_attempt(self.max_attempts)


@dataclass
class ConnectionStats:
    connects: int = 0
    failures: int = 0
    reconnect_attempts: int = 0
    dropped_signals: int = 0
    last_error: Optional[str] = None
    last_connected_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connects": self.connects,
            "failures": self.failures,
            "reconnect_attempts": self.reconnect_attempts,
            "dropped_signals": self.dropped_signals,
            "last_error": self.last_error,
            "last_connected_at": self.last_connected_at,
        }


def _default_broker_factory(url: str, *, max_consumers: Optional[int] = None) -> RabbitBroker:
    # max_consumers -> basic_qos(prefetch_count) на канале брокера
    return RabbitBroker(url, max_consumers=max_consumers)


class BrokerConnectionManager:
    """
    Владелец соединения с RabbitMQ.

    Состояния: DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> ...
    `close()` переводит в CLOSED, после чего сигналы брокера игнорируются.
    """

    def __init__(
        self,
        broker_settings: BrokerSettings,
        *,
        topology: Optional[BrokerTopology] = None,
        policy: Optional[ReconnectPolicy] = None,
        broker_factory: Callable[..., RabbitBroker] = _default_broker_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = broker_settings
        self.topology = topology or BrokerTopology.from_settings(broker_settings)
        self.policy = policy or ReconnectPolicy.from_settings(broker_settings)
        self._broker_factory = broker_factory
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._broker: Optional[RabbitBroker] = None
        self._connection: Any = None
        self._stale_brokers: List[RabbitBroker] = []
        self._reconnect_task: Optional[asyncio.Task] = None

        self._connected_hooks: List[Hook] = []
        self._channel_closing_hooks: List[Hook] = []
        self._listener: Any = None
        self.stats = ConnectionStats()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def channel(self) -> Optional[RabbitBroker]:
        """Live broker-handle только в состоянии CONNECTED, иначе None."""
        if self._state is ConnectionState.CONNECTED:
            return self._broker
        return None

    def require_channel(self) -> RabbitBroker:
        channel = self.channel
        if channel is None:
            raise ChannelUnavailableError(
                "RabbitMQ channel not available", details={"state": self._state.value}
            )
        return channel

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def add_connected_listener(self, hook: Hook) -> None:
        """Hook вызывается после каждого успешного (пере)подключения."""
        self._connected_hooks.append(hook)

    def add_channel_closing_listener(self, hook: Hook) -> None:
        """Hook вызывается перед закрытием канала в `close()`."""
        self._channel_closing_hooks.append(hook)

    def attach_listener(self, listener: Any) -> None:
        """WebSocket listener, который останавливается последним шагом `close()`."""
        self._listener = listener

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "url": self._settings.safe_url,
            "exchange": self.topology.exchange_name,
            "queue": self.topology.queue_name,
            "routing_key": self.topology.routing_key,
            "reconnect_pending": self.reconnect_pending,
            "reconnect_delay": self.policy.delay,
            "reconnect_strategy": self.policy.strategy.value,
            **self.stats.to_dict(),
        }

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Подключиться и объявить топологию.

        Ошибка не пробрасывается: логируется и планируется переподключение.

        Returns:
            True если соединение установлено.
        """
        if self._state is ConnectionState.CLOSED:
            logger.warning("connect() после close() проигнорирован", component=COMPONENT)
            return False
        if self._state is ConnectionState.CONNECTED:
            return True

        try:
            await self._open()
        except BrokerConnectionError as e:
            logger.error(f"❌ Failed to initialize RabbitMQ connection: {e}", component=COMPONENT)
            if self._state is not ConnectionState.CLOSED:
                self._enter_reconnecting()
            return False

        await self._notify_connected()
        return True

    async def _open(self) -> None:
        """Один проход подключения. Raises BrokerConnectionError."""
        self._state = ConnectionState.CONNECTING
        broker = self._broker_factory(self._settings.url, max_consumers=self._settings.prefetch_count)
        step = "connect"
        try:
            connection = await broker.connect()
            logger.info(f"✅ Connected to RabbitMQ ({self._settings.safe_url})", component=COMPONENT)

            step = "declare_topology"
            await self.topology.declare(broker)
            logger.info(
                f"✅ Topology declared: {self.topology.exchange_name} "
                f"-[{self.topology.routing_key}]-> {self.topology.queue_name}",
                component=COMPONENT,
            )

            step = "register_callbacks"
            connection.close_callbacks.add(self._on_connection_closed)
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = f"{step}: {e}"
            if self._state is not ConnectionState.CLOSED:
                self._state = ConnectionState.RECONNECTING
            self._stale_brokers.append(broker)
            raise BrokerConnectionError(
                "RabbitMQ connection failed", step=step, original_error=e
            ) from e

        if self._state is ConnectionState.CLOSED:
            # close() отработал, пока мы подключались
            self._stale_brokers.append(broker)
            await self._dispose_stale()
            raise BrokerConnectionError("Connection manager closed during connect", step=step)

        self._broker = broker
        self._connection = connection
        self._state = ConnectionState.CONNECTED
        self.stats.connects += 1
        self.stats.last_connected_at = time.time()

    async def _notify_connected(self) -> None:
        for hook in list(self._connected_hooks):
            if self._state is not ConnectionState.CONNECTED:
                return
            try:
                await hook()
            except Exception as e:
                logger.error(f"❌ Connected hook failed: {e}", component=COMPONENT)

    # ------------------------------------------------------------------
    # Reconnect
    # ------------------------------------------------------------------

    def _on_connection_closed(self, sender: Any, exc: Optional[BaseException] = None, *args: Any) -> None:
        """Callback aio-pika соединения (close и error приходят сюда)."""
        if sender is not self._connection:
            return
        self.handle_connection_lost(exc)

    def handle_connection_lost(self, exc: Optional[BaseException] = None) -> None:
        """Сигнал закрытия/ошибки соединения от брокера."""
        if self._state is ConnectionState.CLOSED:
            return

        if exc is not None:
            logger.error(f"❌ RabbitMQ connection error: {exc}", component=COMPONENT)
            self.stats.last_error = str(exc)
        else:
            logger.warning("❌ RabbitMQ connection closed", component=COMPONENT)

        if self._broker is not None:
            self._stale_brokers.append(self._broker)
        self._broker = None
        self._connection = None
        self._enter_reconnecting()

    def _enter_reconnecting(self) -> None:
        self._state = ConnectionState.RECONNECTING
        if self.reconnect_pending:
            self.stats.dropped_signals += 1
            logger.debug("Reconnect already scheduled, signal dropped", component=COMPONENT)
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(self._supervise())

    async def _supervise(self) -> None:
        """Единственный цикл переподключения; живёт до CONNECTED или CLOSED."""
        while self._state is ConnectionState.RECONNECTING:
            await self._dispose_stale()
            try:
                await self._reconnect_with_policy()
            except BrokerConnectionError as e:
                self._state = ConnectionState.DISCONNECTED
                logger.error(
                    f"❌ Giving up on RabbitMQ after {self.policy.max_attempts} attempts: {e}",
                    component=COMPONENT,
                )
                return
            if self._state is not ConnectionState.CONNECTED:
                return
            await self._notify_connected()
            # Если за время hooks соединение снова упало, состояние уже RECONNECTING.

    async def _reconnect_with_policy(self) -> None:
        logger.info(
            f"🔄 Attempting to reconnect to RabbitMQ in {self.policy.delay:g} seconds...",
            component=COMPONENT,
        )
        await self._sleep(self.policy.delay)
        if self._state is not ConnectionState.RECONNECTING:
            return

        async for attempt in AsyncRetrying(
            sleep=self._sleep,
            wait=self.policy.wait_strategy(),
            stop=self.policy.stop_strategy(),
            retry=retry_if_exception_type(BrokerConnectionError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                if self._state is not ConnectionState.RECONNECTING:
                    return
                self.stats.reconnect_attempts += 1
                await self._dispose_stale()
                await self._open()

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else self.policy.delay
        logger.warning(
            f"❌ Reconnection failed ({exc}); retrying in {delay:g} seconds "
            f"(attempt {retry_state.attempt_number})",
            component=COMPONENT,
        )

    async def _dispose_stale(self) -> None:
        while self._stale_brokers:
            broker = self._stale_brokers.pop()
            try:
                await broker.stop()
            except Exception as e:
                logger.debug(f"Stale broker close failed: {e}", component=COMPONENT)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Упорядоченная остановка: канал -> соединение -> WebSocket listener.

        Ошибка на шаге логируется и не мешает следующим шагам.
        """
        if self._state is ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED

        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Reconnect task ended with error: {e}", component=COMPONENT)
        self._reconnect_task = None

        broker = self._broker
        self._broker = None
        self._connection = None

        for step, action in (
            ("channel", self._close_channel),
            ("connection", lambda: self._close_connection(broker)),
            ("listener", self._stop_listener),
        ):
            try:
                await action()
            except Exception as e:
                logger.error(f"❌ Error closing {step}: {e}", component=COMPONENT)

    async def _close_channel(self) -> None:
        errors: List[str] = []
        for hook in list(self._channel_closing_hooks):
            try:
                await hook()
            except Exception as e:
                errors.append(str(e))
        if errors:
            raise RuntimeError("; ".join(errors))
        logger.info("✅ RabbitMQ channel closed", component=COMPONENT)

    async def _close_connection(self, broker: Optional[RabbitBroker]) -> None:
        await self._dispose_stale()
        if broker is not None:
            await broker.stop()
            logger.info("✅ RabbitMQ connection closed", component=COMPONENT)

    async def _stop_listener(self) -> None:
        if self._listener is not None:
            await self._listener.stop()


__all__ = [
    "BrokerConnectionManager",
    "BrokerTopology",
    "ConnectionState",
    "ConnectionStats",
    "ReconnectPolicy",
]
