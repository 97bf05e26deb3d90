# tests/test_queues.py
import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import nats.errors
import pytest

from libs.config import Settings
from libs.errors import RoutingError
from libs.queues import InMemoryQueueService, NatsQueueService, create_queue_service

pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

async def test_fifo_per_queue_name():
    queue = InMemoryQueueService()

    await queue.send("a", "1")
    await queue.send("b", "x")
    await queue.send("a", "2")

    assert await queue.receive("a") == "1"
    assert await queue.receive("a") == "2"
    assert await queue.receive("a") is None
    assert await queue.receive("b") == "x"


async def test_receive_on_unknown_queue_returns_none():
    assert await InMemoryQueueService().receive("nope") is None


async def test_statistics():
    queue = InMemoryQueueService()
    for i in range(3):
        await queue.send("in", str(i))
    await queue.receive("in")
    await queue.send("out", "z")

    per_queue = await queue.get_statistics("in")
    total = await queue.get_statistics()

    assert (per_queue.depth, per_queue.processed, per_queue.failed) == (2, 1, 0)
    assert (total.depth, total.processed) == (3, 1)


async def test_unhealthy_queue_rejects_sends():
    queue = InMemoryQueueService()
    queue.healthy = False

    with pytest.raises(RoutingError) as exc_info:
        await queue.send("in", "payload")

    assert exc_info.value.queue_name == "in"
    assert await queue.is_healthy() is False
    assert (await queue.get_statistics("in")).failed == 1
    assert (await queue.get_statistics()).failed == 1


async def test_concurrent_producers_and_consumers_lose_nothing():
    queue = InMemoryQueueService()

    def produce(offset: int) -> None:
        async def _send():
            for i in range(250):
                await queue.send("in", f"{offset}-{i}")
        asyncio.run(_send())

    threads = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    received = []
    while (payload := await queue.receive("in")) is not None:
        received.append(payload)

    assert len(received) == 1000
    assert len(set(received)) == 1000
    # per-producer order is preserved
    assert [p for p in received if p.startswith("0-")] == [f"0-{i}" for i in range(250)]


# ---------------------------------------------------------------------------
# NATS backend (client mocked)
# ---------------------------------------------------------------------------

def _fake_nats(sub: MagicMock) -> MagicMock:
    js = MagicMock()
    js.pull_subscribe = AsyncMock(return_value=sub)
    js.publish = AsyncMock(return_value=MagicMock(seq=1))
    nc = MagicMock()
    nc.jetstream.return_value = js
    nc.is_connected = True
    return nc


@pytest.fixture
def no_stream_bootstrap(mocker):
    return mocker.patch("libs.queues.ensure_stream", new_callable=AsyncMock)


async def test_nats_subscription_is_resolved_once(no_stream_bootstrap):
    sub = MagicMock()
    sub.fetch = AsyncMock(side_effect=nats.errors.TimeoutError)
    nc = _fake_nats(sub)
    queue = NatsQueueService(nc, wait_seconds=0.1)

    results = await asyncio.gather(*(queue.receive("input-messages") for _ in range(5)))

    assert results == [None] * 5
    nc.jetstream.return_value.pull_subscribe.assert_awaited_once_with(
        "swift.input-messages", durable="input-messages-consumer", stream="SWIFT"
    )
    no_stream_bootstrap.assert_awaited_once()


async def test_nats_receive_acks_and_decodes(no_stream_bootstrap):
    msg = MagicMock(data="{4:\n:20:REF\n-}".encode())
    msg.ack = AsyncMock()
    sub = MagicMock()
    sub.fetch = AsyncMock(return_value=[msg])
    queue = NatsQueueService(_fake_nats(sub))

    payload = await queue.receive("input-messages")

    assert payload == "{4:\n:20:REF\n-}"
    msg.ack.assert_awaited_once()
    sub.fetch.assert_awaited_once_with(1, timeout=5.0)
    assert queue._counters["input-messages"].processed == 1


async def test_nats_send_publishes_to_queue_subject(no_stream_bootstrap):
    nc = _fake_nats(MagicMock())
    queue = NatsQueueService(nc)

    await queue.send("completed-messages", "RAW")

    nc.jetstream.return_value.publish.assert_awaited_once_with("swift.completed-messages", b"RAW")


async def test_nats_send_failure_is_routing_error(no_stream_bootstrap):
    nc = _fake_nats(MagicMock())
    nc.jetstream.return_value.publish.side_effect = nats.errors.NoRespondersError
    queue = NatsQueueService(nc)

    with pytest.raises(RoutingError) as exc_info:
        await queue.send("failed-messages", "RAW")

    assert exc_info.value.queue_name == "failed-messages"
    assert (await queue.get_statistics()).failed == 1


async def test_nats_statistics_use_consumer_pending(no_stream_bootstrap):
    sub = MagicMock()
    sub.fetch = AsyncMock(side_effect=nats.errors.TimeoutError)
    sub.consumer_info = AsyncMock(return_value=MagicMock(num_pending=7))
    queue = NatsQueueService(_fake_nats(sub))
    await queue.receive("input-messages")

    stats = await queue.get_statistics("input-messages")

    assert stats.depth == 7


async def test_nats_health_reflects_connection(no_stream_bootstrap, mocker):
    mocker.patch("libs.queues.get_nats_connection", new_callable=AsyncMock, side_effect=OSError("refused"))

    assert await NatsQueueService(None).is_healthy() is False


async def test_factory_selects_backend():
    memory = create_queue_service(Settings(_env_file=None, queue_backend="memory"))
    networked = create_queue_service(Settings(_env_file=None, queue_backend="nats", queue_wait_seconds=2))

    assert isinstance(memory, InMemoryQueueService)
    assert isinstance(networked, NatsQueueService)
