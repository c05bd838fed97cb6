"""
Сквозные тесты NotificationPipeline на in-memory брокере.

Тестирует:
- старт: listener -> подключение -> подписка consumer'а
- событие котировки -> очередь -> consumer (ack)
- переподключение после падения соединения
- упорядоченное закрытие
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from agroquote.config.services import BrokerSettings
from agroquote.messaging.broker import BrokerConnectionManager, ConnectionState
from agroquote.messaging.models import AlertKind, QuotationEvent
from agroquote.messaging.worker import run_worker
from agroquote.services.notification_pipeline import NotificationPipeline

from rabbit_fakes import FakeRabbitServer, make_sleep_recorder


def make_event(area: float) -> QuotationEvent:
    return QuotationEvent(
        quotation_id="q-42",
        client_name="ACME",
        insured_area=area,
        insured_amount=250000.0,
        crop_name="Maíz",
        state_name="Jalisco",
    )


def make_pipeline(server, listener=None, sleep=None):
    connection = BrokerConnectionManager(
        BrokerSettings(),
        broker_factory=server.factory,
        sleep=sleep or make_sleep_recorder(),
    )
    return NotificationPipeline(connection=connection, listener=listener, serve_websocket=False)


def make_listener(order=None):
    listener = MagicMock()
    listener.is_running = True
    listener.start = AsyncMock(
        side_effect=lambda: order.append("listener.start") if order is not None else None
    )
    listener.stop = AsyncMock()
    return listener


class TestPipelineLifecycle:
    """Старт и остановка."""

    @pytest.mark.asyncio
    async def test_start_brings_up_listener_then_broker(self):
        server = FakeRabbitServer()
        order = []
        listener = make_listener(order)
        pipeline = make_pipeline(server, listener=listener)
        original_connect = pipeline.connection.connect

        async def tracked_connect():
            order.append("broker.connect")
            return await original_connect()

        pipeline.connection.connect = tracked_connect

        await pipeline.start()
        await pipeline.start()

        assert order == ["listener.start", "broker.connect"]
        assert pipeline.connection.state is ConnectionState.CONNECTED
        assert pipeline.consumer.is_consuming is True
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_start_with_broker_down_does_not_raise(self):
        server = FakeRabbitServer(fail_connects=1)
        pipeline = make_pipeline(server, sleep=asyncio.sleep)

        await pipeline.start()

        assert pipeline.connection.state is ConnectionState.RECONNECTING
        status = pipeline.status()
        assert status["broker"]["state"] == "reconnecting"
        assert status["consumer"]["consuming"] is False
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_close_stops_consumer_connection_and_listener(self):
        server = FakeRabbitServer()
        listener = make_listener()
        pipeline = make_pipeline(server, listener=listener)
        await pipeline.start()
        broker = server.current

        await pipeline.close()

        assert server.queues["quotation_alerts"].consumers == {}
        assert broker.closed is True
        listener.stop.assert_awaited_once()
        assert pipeline.connection.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_events_dropped_after_shutdown(self):
        server = FakeRabbitServer()
        pipeline = make_pipeline(server)
        await pipeline.start()
        await pipeline.close()

        assert pipeline.notify_quotation_created(make_event(50.0)) is None


class TestPipelineFlow:
    """Событие -> брокер -> consumer."""

    @pytest.mark.asyncio
    async def test_high_area_event_delivered_twice_and_acked(self):
        server = FakeRabbitServer()
        handled = []
        pipeline = make_pipeline(server)
        pipeline.consumer.register_handler(AlertKind.HIGH_AREA_ALERT, AsyncMock(side_effect=handled.append))
        await pipeline.start()

        task = pipeline.notify_quotation_created(make_event(600.0))
        await task

        queue = server.queues["quotation_alerts"]
        assert len(queue.messages) == 2

        delivered = await queue.deliver_all()

        assert [m.acks for m in delivered] == [1, 1]
        assert len(handled) == 2
        assert all(alert.quotation_id == "q-42" for alert in handled)
        assert pipeline.consumer.acked == 2
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_broker_down_event_skipped(self):
        server = FakeRabbitServer(fail_connects=1)
        pipeline = make_pipeline(server, sleep=asyncio.sleep)
        await pipeline.start()

        task = pipeline.notify_quotation_created(make_event(600.0))
        assert await task is None

        assert pipeline.publisher.skipped == 1
        assert server.journal == []
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_flow_resumes_after_reconnect(self):
        server = FakeRabbitServer()
        pipeline = make_pipeline(server)
        await pipeline.start()

        server.current.connection.drop(RuntimeError("CONNECTION_FORCED"))
        await pipeline.connection._reconnect_task

        await pipeline.notify_quotation_created(make_event(50.0))
        delivered = await server.queues["quotation_alerts"].deliver_all()

        assert pipeline.consumer.arms == 2
        assert [m.acks for m in delivered] == [1]
        await pipeline.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_in_flight_publish(self):
        server = FakeRabbitServer()
        pipeline = make_pipeline(server)
        await pipeline.start()

        pipeline.notify_quotation_created(make_event(50.0))
        await pipeline.close()

        assert len(server.queues["quotation_alerts"].messages) == 1
        assert pipeline.publisher.published == 1


class TestWorker:
    """Отдельный consumer-процесс."""

    @pytest.mark.asyncio
    async def test_worker_runs_until_shutdown(self):
        pipeline = MagicMock()

        async def start():
            # имитация SIGTERM: shutdown вызывает зарегистрированный cleanup
            pipeline.shutdown.register_cleanup.call_args.args[0]()

        pipeline.start = AsyncMock(side_effect=start)

        with patch("agroquote.messaging.worker.NotificationPipeline", return_value=pipeline) as factory:
            await asyncio.wait_for(run_worker(), timeout=1.0)

        assert factory.call_args.kwargs["serve_websocket"] is False
        pipeline.shutdown.install_signal_handlers.assert_called_once()
        pipeline.start.assert_awaited_once()
