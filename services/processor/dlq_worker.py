# services/processor/dlq_worker.py
"""
DLQ worker: reads envelopes from the dead-letter queue and logs them.
Optionally (--reparse) runs the raw payload through the MT103 parser and
validator again and logs the outcome.  Nothing is re-published: the worker
exists for manual debugging only.

Example:
    python -m services.processor.dlq_worker --reparse
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from contextlib import suppress
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from libs.config import get_settings
from libs.errors import ParsingError
from libs.models import DeadLetterEnvelope
from libs.parser import parse_mt103
from libs.queues import QueueService, create_queue_service
from libs.sentry import init_sentry
from libs.validator import validate_mt103

logger = logging.getLogger("dlq_worker")


# ---------------------------------------------------------------------------
# DLQ handler
# ---------------------------------------------------------------------------
def reparse(raw_payload: str) -> str:
    """One-line verdict of a fresh parse + validation of *raw_payload*."""
    try:
        message = parse_mt103(raw_payload)
    except ParsingError as err:
        return f"still unparseable: {err}"
    result = validate_mt103(message)
    if not result.is_valid:
        return f"parses, still invalid: {result.describe()}"
    return f"now valid: {message.transaction_reference}"


def handle_dlq_payload(payload: str, *, do_reparse: bool) -> DeadLetterEnvelope | None:
    """Logs one DLQ entry; returns the decoded envelope (``None`` if unreadable)."""
    try:
        envelope = DeadLetterEnvelope.model_validate_json(payload)
    except PydanticValidationError:
        logger.error("Not an envelope?! raw=%s", payload[:120])
        return None

    logger.info("-" * 80)
    logger.info("DLQ message %s stage=%s kind=%s attempts=%s",
                envelope.message_id, envelope.failure_stage.value,
                envelope.error_kind.value, envelope.attempts)
    logger.info(">> envelope: %s", json.dumps(envelope.model_dump(mode="json"), ensure_ascii=False, indent=2))

    if do_reparse:
        logger.info("🔄  Re-parse: %s", reparse(envelope.raw_payload))
    return envelope


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------
async def _dlq_loop(queue: QueueService, queue_name: str, do_reparse: bool, stop: asyncio.Event) -> None:
    logger.info("DLQ worker started. Listening on '%s'...", queue_name)
    while not stop.is_set():
        payload = await queue.receive(queue_name)
        if payload is None:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=1.0)
            continue
        handle_dlq_payload(payload, do_reparse=do_reparse)


# ---------------------------------------------------------------------------
# Entrypoint helpers
# ---------------------------------------------------------------------------
def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="DLQ debug worker for the MT103 pipeline")
    p.add_argument("--queue", default=None, help="Dead-letter queue name (default: DEAD_LETTER_QUEUE)")
    p.add_argument("--reparse", action="store_true",
                   help="Run every payload through the parser and validator again")
    return p.parse_args(argv)


async def _amain(argv: list[str] | None = None) -> None:  # pragma: no cover
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    settings = get_settings()
    init_sentry(release="dlq_worker@1.0.0")
    queue = create_queue_service(settings)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _sig_handler(*_: Any) -> None:
        logger.info("SIGTERM/SIGINT → shutdown...")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _sig_handler)

    await _dlq_loop(queue, args.queue or settings.dead_letter_queue, args.reparse, stop_event)
    await queue.close()
    logger.info("DLQ worker stopped.")


def main() -> None:  # pragma: no cover
    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
