# libs/queues.py
"""Queue adapter: one async contract, two backends.

* :class:`InMemoryQueueService` – FIFO per queue name inside the process;
  used by tests and by ``QUEUE_BACKEND=memory``.
* :class:`NatsQueueService` – NATS JetStream; every queue is the subject
  ``swift.<queue-name>`` of the ``SWIFT`` stream, read by one durable pull
  consumer per queue.

``receive`` never blocks indefinitely: the in-memory backend returns at once,
the NATS backend long-polls for at most ``queue_wait_seconds``.
"""
from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional

import nats.errors
from nats.aio.client import Client as NATS
from nats.js.client import JetStreamContext

from libs.config import Settings, get_settings
from libs.errors import RoutingError
from libs.models import QueueStatistics
from libs.nats_utils import (
    STREAM_NAME,
    durable_for,
    ensure_stream,
    get_nats_connection,
    publish_raw,
    subject_for,
)

logger = logging.getLogger(__name__)

__all__ = [
    "QueueService",
    "InMemoryQueueService",
    "NatsQueueService",
    "create_queue_service",
]


@dataclass
class _Counters:
    processed: int = 0  # successfully dequeued
    failed: int = 0  # failed sends


class QueueService(ABC):
    """Backend-agnostic contract used by the pipeline and the services."""

    @abstractmethod
    async def send(self, queue_name: str, payload: str) -> None:
        """Enqueue *payload*; raises :class:`RoutingError` when the send fails."""

    @abstractmethod
    async def receive(self, queue_name: str) -> Optional[str]:
        """Pop one payload or return ``None`` after a bounded wait."""

    @abstractmethod
    async def is_healthy(self) -> bool: ...

    @abstractmethod
    async def get_statistics(self, queue_name: Optional[str] = None) -> QueueStatistics:
        """Stats of *queue_name*, or the sum over every known queue."""

    async def close(self) -> None:  # noqa: B027 – optional hook
        return None


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------
class InMemoryQueueService(QueueService):
    """Thread-safe FIFO per queue name.

    ``deque.append`` / ``deque.popleft`` are atomic, so producers and
    consumers never take a lock; the lock only guards queue creation and the
    counters.  Set :attr:`healthy` to ``False`` to simulate an outage.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[str]] = {}
        self._counters: dict[str, _Counters] = {}
        self._lock = threading.Lock()
        self.healthy = True

    def _queue(self, queue_name: str) -> deque[str]:
        queue = self._queues.get(queue_name)
        if queue is None:
            with self._lock:
                queue = self._queues.setdefault(queue_name, deque())
                self._counters.setdefault(queue_name, _Counters())
        return queue

    async def send(self, queue_name: str, payload: str) -> None:
        if not self.healthy:
            with self._lock:
                self._counters.setdefault(queue_name, _Counters()).failed += 1
            raise RoutingError(f"Queue {queue_name!r} is unavailable", queue_name=queue_name)
        self._queue(queue_name).append(payload)
        logger.debug("Enqueued message to %s", queue_name)

    async def receive(self, queue_name: str) -> Optional[str]:
        try:
            payload = self._queue(queue_name).popleft()
        except IndexError:
            return None
        with self._lock:
            self._counters[queue_name].processed += 1
        return payload

    async def is_healthy(self) -> bool:
        return self.healthy

    async def get_statistics(self, queue_name: Optional[str] = None) -> QueueStatistics:
        with self._lock:
            # every queue has counters, not every counter has a queue
            names = [queue_name] if queue_name is not None else list(self._counters)
            depth = processed = failed = 0
            for name in names:
                depth += len(self._queues.get(name, ()))
                counters = self._counters.get(name, _Counters())
                processed += counters.processed
                failed += counters.failed
        return QueueStatistics(depth=depth, processed=processed, failed=failed)

    def peek_all(self, queue_name: str) -> list[str]:
        """Snapshot of a queue without consuming it (diagnostics/tests)."""
        return list(self._queues.get(queue_name, ()))


# ---------------------------------------------------------------------------
# NATS JetStream backend
# ---------------------------------------------------------------------------
class NatsQueueService(QueueService):
    """JetStream-backed queues.

    Pull subscriptions are resolved once per queue name and cached; the
    lookup is guarded by an :class:`asyncio.Lock` with a second check inside
    it, so concurrent first receives create exactly one consumer.
    Messages are acked as soon as they are fetched.
    """

    def __init__(self, nc: NATS | None = None, *, wait_seconds: float = 5.0) -> None:
        self._nc = nc
        self._wait_seconds = wait_seconds
        self._subscriptions: dict[str, JetStreamContext.PullSubscription] = {}
        self._lock = asyncio.Lock()
        self._stream_ready = False
        self._counters: dict[str, _Counters] = {}

    async def _connection(self) -> NATS:
        if self._nc is None:
            self._nc = await get_nats_connection()
        if not self._stream_ready:
            await ensure_stream(self._nc)
            self._stream_ready = True
        return self._nc

    async def _subscription(self, queue_name: str) -> JetStreamContext.PullSubscription:
        sub = self._subscriptions.get(queue_name)
        if sub is not None:
            return sub
        async with self._lock:
            sub = self._subscriptions.get(queue_name)
            if sub is None:
                nc = await self._connection()
                sub = await nc.jetstream().pull_subscribe(
                    subject_for(queue_name), durable=durable_for(queue_name), stream=STREAM_NAME
                )
                self._subscriptions[queue_name] = sub
                logger.info("✅ Pull consumer '%s' ready", durable_for(queue_name))
        return sub

    def _counter(self, queue_name: str) -> _Counters:
        return self._counters.setdefault(queue_name, _Counters())

    async def send(self, queue_name: str, payload: str) -> None:
        try:
            nc = await self._connection()
            ack = await publish_raw(nc, payload, queue_name=queue_name)
        except Exception as exc:
            self._counter(queue_name).failed += 1
            raise RoutingError(
                f"Failed to publish to {queue_name!r}: {exc}", queue_name=queue_name
            ) from exc
        logger.debug("Published to %s (seq=%s)", queue_name, ack.seq)

    async def receive(self, queue_name: str) -> Optional[str]:
        sub = await self._subscription(queue_name)
        try:
            messages = await sub.fetch(1, timeout=self._wait_seconds)
        except nats.errors.TimeoutError:
            return None
        if not messages:
            return None
        msg = messages[0]
        await msg.ack()
        self._counter(queue_name).processed += 1
        return msg.data.decode("utf-8")

    async def is_healthy(self) -> bool:
        try:
            nc = await self._connection()
        except Exception as exc:  # noqa: BLE001 – any connection problem means "unhealthy"
            logger.warning("NATS health check failed: %s", exc)
            return False
        return bool(nc.is_connected)

    async def get_statistics(self, queue_name: Optional[str] = None) -> QueueStatistics:
        if queue_name is not None:
            names = [queue_name]
        else:
            names = list(self._subscriptions.keys() | self._counters.keys())
        depth = processed = failed = 0
        for name in names:
            sub = self._subscriptions.get(name)
            if sub is not None:
                info = await sub.consumer_info()
                depth += info.num_pending or 0
            counters = self._counters.get(name, _Counters())
            processed += counters.processed
            failed += counters.failed
        return QueueStatistics(
            depth=depth,
            processed=processed,
            failed=failed,
            last_updated=_dt.datetime.now(_dt.timezone.utc),
        )

    async def close(self) -> None:
        for sub in self._subscriptions.values():
            await sub.unsubscribe()
        self._subscriptions.clear()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def create_queue_service(settings: Settings | None = None) -> QueueService:
    """Backend chosen by ``QUEUE_BACKEND``."""
    settings = settings or get_settings()
    if settings.queue_backend == "nats":
        return NatsQueueService(wait_seconds=settings.queue_wait_seconds)
    return InMemoryQueueService()
