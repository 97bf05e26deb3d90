# libs/dead_letter.py
"""Dead-letter router.

Wraps a failed payload into a :class:`DeadLetterEnvelope` and sends its JSON
to the dead-letter queue.  If that send fails too, the envelope is logged in
full at CRITICAL level and reported to Sentry: the log line is then the only
remaining copy of the message.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from libs.models import DeadLetterEnvelope, ErrorKind, ProcessingStage
from libs.queues import QueueService
from libs.sentry import sentry_capture

logger = logging.getLogger(__name__)

__all__ = ["DeadLetterRouter"]


class DeadLetterRouter:
    def __init__(self, queue: QueueService, queue_name: str) -> None:
        self._queue = queue
        self._queue_name = queue_name

    @property
    def queue_name(self) -> str:
        return self._queue_name

    async def route(
        self,
        raw_payload: str,
        stage: ProcessingStage,
        kind: ErrorKind,
        diagnostic: str,
        *,
        message_id: Optional[uuid.UUID] = None,
        attempts: int = 1,
    ) -> bool:
        """Send the envelope; ``True`` on success.

        Never raises: a failed send is logged as a fatal error instead.
        """
        envelope = DeadLetterEnvelope(
            message_id=message_id,
            raw_payload=raw_payload,
            failure_stage=stage,
            error_kind=kind,
            diagnostic=diagnostic,
            attempts=attempts,
        )
        body = envelope.model_dump_json()
        try:
            await self._queue.send(self._queue_name, body)
        except Exception as exc:  # noqa: BLE001 – nothing may escape the last resort
            logger.critical(
                "❌ FATAL: dead-letter send to %s failed (%s); message would be lost. Envelope: %s",
                self._queue_name,
                exc,
                body,
            )
            sentry_capture(exc, extras={"dead_letter_envelope": body, "queue": self._queue_name})
            return False

        logger.warning(
            "Dead-lettered message %s at stage %s (%s): %s",
            message_id,
            stage.value,
            kind.value,
            diagnostic,
        )
        return True
