import asyncio
from contextlib import suppress
from typing import Optional

from lms_notifier.services.notification_dispatcher import NotificationDispatcher
from lms_notifier.utils.context import request_scope
from lms_notifier.utils.logging import get_logger

logger = get_logger()


class PeriodicDispatchWorker:
    """
    Runs a dispatch cycle immediately and then every `interval` seconds.

    `stop()` ends the schedule and waits up to `drain_timeout` seconds for an
    in-flight cycle to finish before cancelling it.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        interval: float = 300,
        drain_timeout: float = 120,
    ):
        self.dispatcher = dispatcher
        self.interval = interval
        self.drain_timeout = drain_timeout
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Periodic dispatch already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="notification-dispatch")
        logger.info(f"Periodic dispatch started (every {self.interval}s)")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            with request_scope():
                try:
                    await self.dispatcher.process_now()
                except Exception:
                    logger.exception("Dispatch cycle failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Dispatch cycle still running after {self.drain_timeout}s, cancelling"
            )
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        finally:
            self._task = None
            logger.info("Periodic dispatch stopped")
