# tests/test_nats_utils.py
import pytest
from unittest.mock import AsyncMock, MagicMock

import nats.js.errors

from libs.nats_utils import (
    STREAM_NAME,
    durable_for,
    ensure_stream,
    get_nats_connection,
    publish_raw,
    subject_for,
)

# All tests using async/await carry this marker
pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def clear_cache():
    """Clears the singleton cache after each test so tests stay isolated."""
    yield
    get_nats_connection.cache_clear()


def _fake_nc() -> MagicMock:
    js = MagicMock()
    js.stream_info = AsyncMock()
    js.add_stream = AsyncMock()
    js.update_stream = AsyncMock()
    js.publish = AsyncMock(return_value=MagicMock(stream=STREAM_NAME, seq=42))
    nc = MagicMock()
    nc.jetstream.return_value = js
    return nc


async def test_get_nats_connection_is_singleton(mocker):
    """
    get_nats_connection must really be a singleton and return the same object
    on repeated calls.
    """
    # Arrange: mock nats.connect so no real connection is made
    mock_connect = mocker.patch("nats.connect", new_callable=AsyncMock)
    mock_connect.return_value = "fake_connection_object"

    # Act
    conn1 = await get_nats_connection()
    conn2 = await get_nats_connection()

    # Assert
    assert conn1 is conn2
    mock_connect.assert_called_once()


async def test_subject_and_durable_names():
    assert subject_for("input-messages") == "swift.input-messages"
    assert durable_for("a.b") == "a_b-consumer"


async def test_ensure_stream_creates_missing_stream():
    nc = _fake_nc()
    js = nc.jetstream.return_value
    js.stream_info.side_effect = nats.js.errors.NotFoundError

    await ensure_stream(nc)

    js.add_stream.assert_awaited_once()
    config = js.add_stream.await_args.args[0]
    assert config.name == "SWIFT"
    assert config.subjects == ["swift.>"]


async def test_ensure_stream_updates_outdated_subjects():
    nc = _fake_nc()
    js = nc.jetstream.return_value
    js.stream_info.return_value = MagicMock(config=MagicMock(subjects=["swift.old"]))

    await ensure_stream(nc)

    js.update_stream.assert_awaited_once()
    js.add_stream.assert_not_awaited()


async def test_ensure_stream_leaves_current_stream_alone():
    nc = _fake_nc()
    js = nc.jetstream.return_value
    js.stream_info.return_value = MagicMock(config=MagicMock(subjects=["swift.>"]))

    await ensure_stream(nc)

    js.update_stream.assert_not_awaited()
    js.add_stream.assert_not_awaited()


async def test_publish_raw_sends_plain_utf8(mocker):
    nc = _fake_nc()

    ack = await publish_raw(nc, "{1:F01}", queue_name="input-messages")

    assert ack.seq == 42
    nc.jetstream.return_value.stream_info.assert_not_awaited()
    nc.jetstream.return_value.publish.assert_awaited_once_with("swift.input-messages", b"{1:F01}")
