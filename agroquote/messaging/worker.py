"""
Отдельный consumer-процесс очереди `quotation_alerts`.

Запуск (пример):
    python -m agroquote.messaging.worker
"""

from __future__ import annotations

import asyncio

from agroquote.config.settings import settings
from agroquote.services.notification_pipeline import NotificationPipeline
from agroquote.utility.logging_client import logger


async def run_worker() -> None:
    # Без WebSocket: listener живёт в API-процессе.
    pipeline = NotificationPipeline(settings, serve_websocket=False)
    stopped = asyncio.Event()
    pipeline.shutdown.register_cleanup(stopped.set)
    pipeline.shutdown.install_signal_handlers()

    logger.info("Alert worker starting", component="consumer")
    await pipeline.start()
    await stopped.wait()


def main() -> None:
    # Важно: это long-lived процесс (воркер).
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
