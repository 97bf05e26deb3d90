# services/generator/main.py
"""Test-mode feeder: generates MT103 batches and sends them to the input queue.

Example:
    python -m services.generator.main --once --batch-size 50 --valid-percentage 90
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from typing import Any, Optional

from libs.config import Settings, get_settings
from libs.errors import RoutingError
from libs.generator import MT103Generator
from libs.queues import QueueService, create_queue_service
from libs.sentry import init_sentry, sentry_capture

logger = logging.getLogger("generator")


async def send_batch(
    queue: QueueService,
    generator: MT103Generator,
    *,
    queue_name: str,
    batch_size: int,
    valid_percentage: int,
) -> int:
    """Returns how many messages were enqueued."""
    sent = 0
    for message in generator.generate_batch(batch_size, valid_percentage=valid_percentage):
        try:
            await queue.send(queue_name, message.raw_message)
        except RoutingError as err:
            logger.error("❌ Failed to send test message %s: %s", message.transaction_reference, err)
            sentry_capture(err, extras={"queue": queue_name})
            continue
        logger.debug("Generated and sent test message: %s", message.transaction_reference)
        sent += 1
    logger.info("Generated and sent %s/%s test message(s) to %s", sent, batch_size, queue_name)
    return sent


async def generation_loop(
    queue: QueueService,
    generator: MT103Generator,
    settings: Settings,
    stop: asyncio.Event,
    *,
    batch_size: Optional[int] = None,
    valid_percentage: Optional[int] = None,
) -> None:
    while not stop.is_set():
        await send_batch(
            queue,
            generator,
            queue_name=settings.input_queue,
            batch_size=batch_size or settings.test_batch_size,
            valid_percentage=settings.test_valid_percentage if valid_percentage is None else valid_percentage,
        )
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=settings.test_interval_seconds)


# ---------------------------------------------------------------------------
# Entrypoint helpers
# ---------------------------------------------------------------------------
def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="MT103 test message generator")
    p.add_argument("--batch-size", type=int, default=None, help="Messages per batch (default: TEST_BATCH_SIZE)")
    p.add_argument("--valid-percentage", type=int, default=None,
                   help="Share of valid messages, 0-100 (default: TEST_VALID_PERCENTAGE)")
    p.add_argument("--seed", type=int, default=None, help="Seed for reproducible batches")
    p.add_argument("--once", action="store_true", help="Send one batch and exit")
    return p.parse_args(argv)


async def _amain(argv: list[str] | None = None) -> None:  # pragma: no cover
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    settings = get_settings()
    init_sentry(release="generator@1.0.0")
    queue = create_queue_service(settings)
    generator = MT103Generator(seed=args.seed)

    if args.once:
        await send_batch(
            queue,
            generator,
            queue_name=settings.input_queue,
            batch_size=args.batch_size or settings.test_batch_size,
            valid_percentage=settings.test_valid_percentage if args.valid_percentage is None else args.valid_percentage,
        )
        await queue.close()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _sig_handler(*_: Any) -> None:
        logger.info("Stop signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _sig_handler)

    await generation_loop(
        queue, generator, settings, stop_event,
        batch_size=args.batch_size, valid_percentage=args.valid_percentage,
    )
    await queue.close()


def main() -> None:  # pragma: no cover – CLI
    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
