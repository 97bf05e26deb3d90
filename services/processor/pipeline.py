# services/processor/pipeline.py
"""Processing pipeline: one raw payload in, one :class:`ProcessingResult` out.

    received → parsing → validating → persisting → routing → completed
                  ╰──────────┴────────────┴───────────┴──→ dead_lettered

Stage rules
-----------
* **parsing**    – retried on :class:`ParsingError` up to
  ``MAX_RETRY_ATTEMPTS`` attempts in total (single attempt when
  ``RETRY_PARSE_FAILURES=false``).
* **validating** – never retried; the violation list is the diagnostic.
* **persisting** – retried on :class:`PersistenceError`; the record id is
  fixed before the first attempt, so retries cannot create duplicates.
* **routing**    – the raw payload is forwarded verbatim to the completed
  queue, retried on :class:`RoutingError` without touching persistence
  again.  If it is exhausted the record is flagged ``dead_letter``.

Components raise; this module turns every exception into a result and a
dead-letter envelope, and updates the metrics exactly once per message.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from db.repository import MessageRepository
from libs.config import Settings, get_settings
from libs.dead_letter import DeadLetterRouter
from libs.errors import (
    ParsingError,
    PersistenceError,
    PipelineError,
    RoutingError,
    UnclassifiedError,
    ValidationError,
)
from libs.models import (
    MessageStatus,
    MT103Message,
    ProcessedMessage,
    ProcessingResult,
    ProcessingStage,
    ValidationResult,
)
from libs.parser import BaseMessageParser, get_parser
from libs.queues import QueueService
from libs.sentry import sentry_capture
from libs.validator import validate_mt103
from services.processor.metrics import DEAD_LETTER_SEND_FAIL, IN_FLIGHT, RETRIES, MetricsTracker

logger = logging.getLogger(__name__)

__all__ = ["MessagePipeline"]


class _StageFailed(Exception):
    """Internal: carries the classified error and how many attempts were made."""

    def __init__(self, error: PipelineError, attempts: int) -> None:
        super().__init__(error.message)
        self.error = error
        self.attempts = attempts


class MessagePipeline:
    def __init__(
        self,
        *,
        queue: QueueService,
        repository: MessageRepository,
        settings: Settings | None = None,
        parser: BaseMessageParser | None = None,
        validator: Callable[[MT103Message], ValidationResult] = validate_mt103,
        dead_letters: DeadLetterRouter | None = None,
        metrics: MetricsTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._queue = queue
        self._repository = repository
        self._parser = parser or get_parser("MT103")
        self._validator = validator
        self._dead_letters = dead_letters or DeadLetterRouter(queue, self._settings.dead_letter_queue)
        self.metrics = metrics or MetricsTracker()
        self._sleep = sleep

    # ------------------------------------------------------------------ public

    async def process(self, raw_message: str, *, message_id: uuid.UUID | None = None) -> ProcessingResult:
        message_id = message_id or uuid.uuid4()
        started = time.perf_counter()
        IN_FLIGHT.inc()
        try:
            result = await self._run(raw_message, message_id)
        finally:
            IN_FLIGHT.dec()

        elapsed_ms = (time.perf_counter() - started) * 1000
        if result.success:
            self.metrics.record_success(elapsed_ms)
        else:
            self.metrics.record_failure(result.error_kind, elapsed_ms)
        return result

    # ---------------------------------------------------------------- stages

    async def _run(self, raw: str, message_id: uuid.UUID) -> ProcessingResult:
        settings = self._settings
        parse_attempts = settings.max_retry_attempts if settings.retry_parse_failures else 1

        try:
            parsed, _ = await self._attempt(
                ProcessingStage.PARSING, ParsingError, parse_attempts, self._parse, raw
            )
            logger.debug("✅  P: ok %s (%s)", message_id, parsed.transaction_reference)

            self._validate(parsed)
            logger.debug("✅  V: ok %s", message_id)

            record = ProcessedMessage(
                id=message_id,
                message_type=parsed.message_type,
                raw_message=raw,
                parsed=parsed,
                status=MessageStatus.PROCESSED,
                metadata={"transaction_reference": parsed.transaction_reference},
            )
            await self._attempt(
                ProcessingStage.PERSISTING,
                PersistenceError,
                settings.max_retry_attempts,
                self._repository.save_message,
                record,
            )
            logger.debug("✅  S: ok %s", message_id)
        except _StageFailed as failed:
            return await self._dead_letter(raw, message_id, failed.error, failed.attempts)

        try:
            _, attempts = await self._attempt(
                ProcessingStage.ROUTING, RoutingError, settings.max_retry_attempts, self._forward, raw
            )
        except _StageFailed as failed:
            await self._flag_dead_letter(message_id, failed.error)
            return await self._dead_letter(raw, message_id, failed.error, failed.attempts)

        logger.info("✅ Message %s (%s) completed", message_id, parsed.transaction_reference)
        return ProcessingResult(
            success=True,
            message_id=message_id,
            stage=ProcessingStage.COMPLETED,
            attempts=attempts,
        )

    async def _parse(self, raw: str) -> MT103Message:
        return self._parser.parse(raw)

    def _validate(self, parsed: MT103Message) -> None:
        try:
            result = self._validator(parsed)
        except Exception as exc:  # noqa: BLE001 – classified below
            raise _StageFailed(self._unexpected(exc, ProcessingStage.VALIDATING), 1) from exc
        if not result.is_valid:
            raise _StageFailed(ValidationError(result.describe()), 1)

    async def _forward(self, raw: str) -> None:
        queue_name = self._settings.completed_queue
        try:
            await self._queue.send(queue_name, raw)
        except RoutingError:
            raise
        except Exception as exc:  # noqa: BLE001 – any send failure is a routing failure
            raise RoutingError(f"Send to {queue_name!r} failed: {exc}", queue_name=queue_name) from exc

    # ---------------------------------------------------------------- helpers

    async def _attempt(
        self,
        stage: ProcessingStage,
        retry_on: type[PipelineError],
        max_attempts: int,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> tuple[Any, int]:
        """Runs *fn* with retries; returns ``(result, attempts)`` or raises :class:`_StageFailed`."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                min=self._settings.retry_backoff_min, max=self._settings.retry_backoff_max
            ),
            retry=retry_if_exception_type(retry_on),
            before_sleep=self._before_sleep(stage),
            sleep=self._sleep,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await fn(*args)
        except PipelineError as exc:
            logger.error("❌  %s: fail after %s attempt(s) – %s", stage.value, attempts, exc)
            raise _StageFailed(exc, attempts) from exc
        except Exception as exc:  # noqa: BLE001 – unexpected, never retried
            raise _StageFailed(self._unexpected(exc, stage), attempts) from exc
        return result, attempts

    @staticmethod
    def _before_sleep(stage: ProcessingStage) -> Callable[[Any], None]:
        log_retry = before_sleep_log(logger, logging.WARNING)

        def _hook(retry_state: Any) -> None:
            RETRIES.labels(stage=stage.value).inc()
            log_retry(retry_state)

        return _hook

    @staticmethod
    def _unexpected(exc: Exception, stage: ProcessingStage) -> UnclassifiedError:
        logger.exception("❌  Unexpected error at stage %s", stage.value)
        sentry_capture(exc, extras={"stage": stage.value})
        return UnclassifiedError(f"{type(exc).__name__}: {exc}", stage=stage)

    async def _flag_dead_letter(self, message_id: uuid.UUID, error: PipelineError) -> None:
        try:
            await self._repository.update_status(
                message_id, MessageStatus.DEAD_LETTER, error_details=error.describe()
            )
        except Exception as exc:  # noqa: BLE001 – the envelope still goes out
            logger.error("Could not flag %s as dead_letter: %s", message_id, exc)
            sentry_capture(exc, extras={"message_id": str(message_id)})

    async def _dead_letter(
        self, raw: str, message_id: uuid.UUID, error: PipelineError, attempts: int
    ) -> ProcessingResult:
        diagnostic = error.describe()
        routed = await self._dead_letters.route(
            raw,
            error.stage,
            error.kind,
            diagnostic,
            message_id=message_id,
            attempts=attempts,
        )
        if not routed:
            DEAD_LETTER_SEND_FAIL.inc()
            diagnostic = f"{diagnostic} (dead-letter send failed)"
        return ProcessingResult(
            success=False,
            message_id=message_id,
            stage=ProcessingStage.DEAD_LETTERED if routed else error.stage,
            failed_stage=error.stage,
            error_kind=error.kind,
            detail=diagnostic,
            attempts=max(attempts, 1),
        )
