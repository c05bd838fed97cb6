"""
Graceful Shutdown Manager.
Tracks fire-and-forget alert publishes and runs ordered cleanup.
"""

import asyncio
import signal
from typing import Awaitable, Callable, List, Optional, Set, Union

from agroquote.config.constants import SHUTDOWN_DRAIN_TIMEOUT_SECONDS
from agroquote.utility.logging_client import logger

Cleanup = Callable[[], Union[None, Awaitable[None]]]


class ShutdownManager:
    """
    Manages graceful shutdown of pipeline components.

    Features:
    - Track in-flight publish tasks without blocking the caller
    - Wait for them on shutdown (configurable timeout)
    - Run cleanup callbacks in registration order, each isolated
    """

    def __init__(self, drain_timeout: float = SHUTDOWN_DRAIN_TIMEOUT_SECONDS):
        self.drain_timeout = drain_timeout
        self._shutdown_requested = False
        self._in_flight_tasks: Set[asyncio.Task] = set()
        self._cleanup_callbacks: List[Cleanup] = []

    @property
    def is_shutting_down(self) -> bool:
        """Check if shutdown was requested."""
        return self._shutdown_requested

    @property
    def in_flight(self) -> int:
        return len(self._in_flight_tasks)

    def register_cleanup(self, callback: Cleanup) -> None:
        """Register cleanup callback to run on shutdown."""
        self._cleanup_callbacks.append(callback)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Track a scheduled task; it is forgotten once done."""
        self._in_flight_tasks.add(task)
        task.add_done_callback(self._in_flight_tasks.discard)
        return task

    async def initiate_shutdown(self, sig: Optional[signal.Signals] = None):
        """Initiate graceful shutdown sequence."""
        if self._shutdown_requested:
            logger.warning("Shutdown already in progress", component="shutdown")
            return

        self._shutdown_requested = True
        signal_name = sig.name if sig else "MANUAL"
        logger.info(
            f"🛑 Graceful shutdown initiated (signal: {signal_name})",
            component="shutdown",
        )

        # Step 1: Wait for in-flight publishes
        await self._drain_in_flight_tasks()

        # Step 2: Run cleanup callbacks
        await self._run_cleanup_callbacks()

        logger.info("✅ Graceful shutdown completed", component="shutdown")

    async def _drain_in_flight_tasks(self):
        """Wait for in-flight tasks to complete."""
        tasks = [t for t in self._in_flight_tasks if not t.done()]
        if not tasks:
            logger.debug("No in-flight tasks to drain", component="shutdown")
            return

        logger.info(
            f"Waiting for {len(tasks)} in-flight tasks (timeout: {self.drain_timeout}s)",
            component="shutdown",
        )

        _, pending = await asyncio.wait(tasks, timeout=self.drain_timeout)
        if not pending:
            logger.info(f"✅ All {len(tasks)} tasks completed", component="shutdown")
            return

        logger.warning(
            f"⚠️ Timeout reached, {len(pending)} tasks still running (forcing shutdown)",
            component="shutdown",
        )
        for task in pending:
            task.cancel()

    async def _run_cleanup_callbacks(self):
        """Execute all registered cleanup callbacks."""
        for i, callback in enumerate(self._cleanup_callbacks, 1):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug(f"Cleanup callback {i} completed", component="shutdown")
            except Exception as e:
                logger.error(
                    f"❌ Cleanup callback {i} failed: {e}",
                    component="shutdown",
                )

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """SIGTERM/SIGINT -> initiate_shutdown (standalone worker process)."""
        loop = loop or asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info(f"Received signal {sig.name}", component="signal")
            loop.create_task(self.initiate_shutdown(sig))

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
