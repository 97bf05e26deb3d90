# services/processor/worker.py
"""Processor host: polls the input queue and feeds the pipeline.

Two loops share one state object:

* the **control loop** consumes :class:`ControlCommand` values from the
  control channel and is the only place the state changes;
* the **polling loop** reads the state before every dequeue, so ``stop``
  lets in-flight messages finish but takes no new ones.

At most ``MAX_CONCURRENT_MESSAGES`` messages are in flight (semaphore).

Example:
    python -m services.processor.worker --control file
"""
from __future__ import annotations

import argparse
import asyncio
import datetime as _dt
import logging
import signal
import sys
from contextlib import suppress
from enum import Enum
from typing import Any, Optional

from db.repository import MessageRepository, create_repository
from libs.config import Settings, get_settings
from libs.control import ControlChannel, ControlCommand, create_control_channel
from libs.models import ProcessorStatus
from libs.queues import QueueService, create_queue_service
from libs.sentry import init_sentry, sentry_capture, sentry_capture_message
from services.processor.metrics import QUEUE_DEPTH, start_metrics_server
from services.processor.pipeline import MessagePipeline

logger = logging.getLogger("processor")

CONTROL_POLL_SECONDS = 0.5


class ProcessorState(str, Enum):
    STOPPED = "stopped"
    POLLING = "polling"


class ProcessorService:
    def __init__(
        self,
        *,
        queue: QueueService,
        repository: MessageRepository,
        control: ControlChannel,
        settings: Settings | None = None,
        pipeline: MessagePipeline | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._queue = queue
        self._control = control
        self.pipeline = pipeline or MessagePipeline(
            queue=queue, repository=repository, settings=self._settings
        )
        self._state = ProcessorState.STOPPED
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent_messages)
        self._in_flight: set[asyncio.Task] = set()
        self._last_processed_at: Optional[_dt.datetime] = None
        self._shutdown = asyncio.Event()
        # one Sentry event per outage
        self._queue_healthy = True

    @property
    def state(self) -> ProcessorState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------- control surface

    async def start(self) -> None:
        await self._control.send(ControlCommand.START)

    async def stop(self) -> None:
        await self._control.send(ControlCommand.STOP)

    async def restart(self) -> None:
        await self._control.send(ControlCommand.RESTART)

    async def get_status(self) -> ProcessorStatus:
        metrics = self.pipeline.metrics.snapshot()
        queued, healthy = 0, False
        try:
            healthy = await self._queue.is_healthy()
            if healthy:
                queued = (await self._queue.get_statistics(self._settings.input_queue)).depth
        except Exception as exc:  # noqa: BLE001 – status must always be reportable
            logger.warning("Queue statistics unavailable: %s", exc)
            healthy = False
        return ProcessorStatus(
            state=self._state.value,
            is_polling=self._state is ProcessorState.POLLING,
            last_processed_at=self._last_processed_at,
            queued=queued,
            processed=metrics.processed,
            failed=metrics.failed,
            average_processing_ms=metrics.average_processing_ms,
            queue_healthy=healthy,
        )

    def shutdown(self) -> None:
        self._shutdown.set()

    # ------------------------------------------------------------------ run

    async def run(self, *, autostart: bool = True) -> None:
        """Runs until :meth:`shutdown`; returns after in-flight messages finish."""
        if autostart:
            await self._apply(ControlCommand.START)

        loops = [
            asyncio.create_task(self._control_loop(), name="control"),
            asyncio.create_task(self._status_loop(), name="status"),
        ]
        poller = asyncio.create_task(self._poll_loop(), name="poll")

        await self._shutdown.wait()
        await self._apply(ControlCommand.STOP)
        await poller
        for task in loops:
            task.cancel()
        for task in loops:
            with suppress(asyncio.CancelledError):
                await task
        await self._drain()
        await self._control.publish_status(await self.get_status())
        logger.info("Processor stopped, %s message(s) processed", self.pipeline.metrics.snapshot().processed)

    async def _apply(self, command: ControlCommand) -> None:
        if command is ControlCommand.START:
            self._state = ProcessorState.POLLING
            logger.info("▶️  Processing started")
        elif command is ControlCommand.STOP:
            self._state = ProcessorState.STOPPED
            logger.info("⏹  Processing stopped (in-flight: %s)", self.in_flight)
        elif command is ControlCommand.RESTART:
            self._state = ProcessorState.STOPPED
            await self._drain()
            self._state = ProcessorState.POLLING
            logger.info("🔄 Processing restarted")
        await self._control.publish_status(await self.get_status())

    async def _control_loop(self) -> None:
        while not self._shutdown.is_set():
            command = await self._control.receive(timeout=CONTROL_POLL_SECONDS)
            if command is not None:
                await self._apply(command)

    async def _status_loop(self) -> None:
        while not self._shutdown.is_set():
            status = await self.get_status()
            QUEUE_DEPTH.set(status.queued)
            await self._control.publish_status(status)
            await self._pause(self._settings.status_interval_seconds)

    async def _poll_loop(self) -> None:
        settings = self._settings
        while not self._shutdown.is_set():
            if self._state is not ProcessorState.POLLING:
                await self._pause(settings.polling_interval_seconds)
                continue

            if not await self._queue.is_healthy():
                logger.warning("Input queue unhealthy, retrying in %ss", settings.unhealthy_backoff_seconds)
                if self._queue_healthy:
                    sentry_capture_message(
                        "Input queue unhealthy", level="warning", extras={"queue": settings.input_queue}
                    )
                self._queue_healthy = False
                await self._pause(settings.unhealthy_backoff_seconds)
                continue

            self._queue_healthy = True
            await self._semaphore.acquire()
            # stop may have arrived while waiting for a free slot
            if self._state is not ProcessorState.POLLING or self._shutdown.is_set():
                self._semaphore.release()
                continue

            try:
                raw = await self._queue.receive(settings.input_queue)
            except Exception as exc:  # noqa: BLE001 – keep polling
                self._semaphore.release()
                logger.error("❌ Receive from %s failed: %s", settings.input_queue, exc)
                sentry_capture(exc, extras={"queue": settings.input_queue})
                await self._pause(settings.unhealthy_backoff_seconds)
                continue

            if raw is None:
                self._semaphore.release()
                await self._pause(settings.polling_interval_seconds)
                continue

            task = asyncio.create_task(self._handle(raw))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _handle(self, raw: str) -> None:
        try:
            await self.pipeline.process(raw)
        except Exception as exc:  # noqa: BLE001 – the loop must survive
            logger.exception("❌ Pipeline crashed on a message")
            sentry_capture(exc, extras={"raw_message": raw})
        finally:
            self._last_processed_at = _dt.datetime.now(_dt.timezone.utc)
            self._semaphore.release()

    async def _drain(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _pause(self, seconds: float) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)


# ---------------------------------------------------------------------------
# Entrypoint helpers
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="MT103 processor")
    p.add_argument("--control", choices=("memory", "file"), default=None,
                   help="Control channel transport (default: CONTROL_TRANSPORT)")
    p.add_argument("--no-autostart", action="store_true",
                   help="Wait for a start command before polling")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args(argv)


async def _amain(argv: list[str] | None = None) -> None:  # pragma: no cover
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")

    settings = get_settings()
    if args.control:
        settings = settings.model_copy(update={"control_transport": args.control})

    # Metrics & Sentry first
    start_metrics_server(settings.processor_metrics_port)
    init_sentry(release="processor@1.0.0")

    if settings.storage_backend == "postgres":
        from db.session import init_models

        await init_models()

    queue = create_queue_service(settings)
    service = ProcessorService(
        queue=queue,
        repository=create_repository(settings),
        control=create_control_channel(settings),
        settings=settings,
    )

    # Graceful shutdown
    loop = asyncio.get_running_loop()

    def _sig_handler(*_: Any) -> None:
        logger.info("Shutdown signal received, finishing in-flight messages...")
        service.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _sig_handler)

    logger.info("Processor up: queue=%s backend=%s storage=%s",
                settings.input_queue, settings.queue_backend, settings.storage_backend)
    await service.run(autostart=not args.no_autostart)
    await queue.close()


def main() -> None:  # pragma: no cover – CLI
    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
