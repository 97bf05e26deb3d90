# tests/test_dead_letter.py
import logging
import uuid
from unittest.mock import AsyncMock

import pytest

from libs.dead_letter import DeadLetterRouter
from libs.errors import RoutingError
from libs.models import DeadLetterEnvelope, ErrorKind, ProcessingStage
from libs.queues import InMemoryQueueService

pytestmark = pytest.mark.asyncio


async def test_envelope_has_fixed_shape():
    queue = InMemoryQueueService()
    router = DeadLetterRouter(queue, "failed-messages")
    message_id = uuid.uuid4()

    ok = await router.route(
        "RAW",
        ProcessingStage.PARSING,
        ErrorKind.PARSING,
        "parsing failed [field 23B]: Missing mandatory field 23B",
        message_id=message_id,
        attempts=3,
    )

    assert ok is True
    [body] = queue.peek_all("failed-messages")
    envelope = DeadLetterEnvelope.model_validate_json(body)
    assert envelope.raw_payload == "RAW"
    assert envelope.failure_stage is ProcessingStage.PARSING
    assert envelope.error_kind is ErrorKind.PARSING
    assert "23B" in envelope.diagnostic
    assert envelope.attempts == 3
    assert envelope.message_id == message_id
    assert envelope.failed_at.tzinfo is not None


async def test_failed_send_is_logged_as_fatal(caplog, mocker):
    queue = InMemoryQueueService()
    queue.send = AsyncMock(side_effect=RoutingError("down", queue_name="failed-messages"))
    capture = mocker.patch("libs.dead_letter.sentry_capture")
    router = DeadLetterRouter(queue, "failed-messages")

    with caplog.at_level(logging.CRITICAL, logger="libs.dead_letter"):
        ok = await router.route("RAW-PAYLOAD", ProcessingStage.VALIDATING, ErrorKind.VALIDATION, "bad")

    assert ok is False
    [record] = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    # the envelope, raw payload included, survives in the log line
    assert "RAW-PAYLOAD" in record.getMessage()
    capture.assert_called_once()
