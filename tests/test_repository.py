# tests/test_repository.py
import datetime as dt
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import SAMPLE_MT103
from db.repository import InMemoryMessageRepository, SqlMessageRepository, _from_row, _to_row
from db.models import SwiftMessageRecord
from libs.errors import PersistenceError
from libs.models import MessageFilter, MessageStatus, ProcessedMessage
from libs.parser import parse_mt103

pytestmark = pytest.mark.asyncio


def _record(status=MessageStatus.PROCESSED, *, minutes_ago: int = 0, parsed=True) -> ProcessedMessage:
    return ProcessedMessage(
        id=uuid.uuid4(),
        message_type="MT103",
        raw_message=SAMPLE_MT103,
        parsed=parse_mt103(SAMPLE_MT103) if parsed else None,
        status=status,
        processed_at=dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=minutes_ago),
    )


async def test_save_is_idempotent_on_id():
    repo = InMemoryMessageRepository()
    record = _record()

    first = await repo.save_message(record)
    second = await repo.save_message(record.model_copy(update={"status": MessageStatus.FAILED}))

    assert first == second == record.id
    assert len(repo) == 1
    assert (await repo.get_by_id(record.id)).status is MessageStatus.PROCESSED


async def test_filter_paging_and_count():
    repo = InMemoryMessageRepository()
    for i in range(5):
        await repo.save_message(_record(minutes_ago=i))
    await repo.save_message(_record(MessageStatus.DEAD_LETTER, minutes_ago=10))

    processed = await repo.get_by_filter(MessageFilter(status=MessageStatus.PROCESSED, skip=1, take=2))
    recent = MessageFilter(from_date=dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=5, seconds=30))

    assert len(processed) == 2
    assert processed[0].processed_at > processed[1].processed_at
    assert await repo.count() == 6
    assert await repo.count(MessageFilter(status=MessageStatus.DEAD_LETTER)) == 1
    assert await repo.count(recent) == 5
    assert await repo.count(MessageFilter(message_type="MT202")) == 0


async def test_update_status():
    repo = InMemoryMessageRepository()
    record = _record()
    await repo.save_message(record)

    updated = await repo.update_status(record.id, MessageStatus.DEAD_LETTER, error_details="routing failed")
    missing = await repo.update_status(uuid.uuid4(), MessageStatus.ARCHIVED)

    assert updated is True
    assert missing is False
    stored = await repo.get_by_id(record.id)
    assert stored.status is MessageStatus.DEAD_LETTER
    assert stored.error_details == "routing failed"


async def test_row_mapping_round_trip():
    record = _record()

    row = SwiftMessageRecord(**_to_row(record))
    back = _from_row(row)

    assert row.transaction_reference == "REFERENCE12345"
    assert len(row.raw_md5) == 32
    assert back.parsed == record.parsed
    assert back.status is MessageStatus.PROCESSED


def _failing_sessionmaker() -> MagicMock:
    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.execute = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("connection reset")))
    session.commit = AsyncMock()
    return MagicMock(return_value=session)


async def test_sql_errors_become_persistence_errors():
    repo = SqlMessageRepository(sessionmaker=_failing_sessionmaker())

    with pytest.raises(PersistenceError, match="connection reset"):
        await repo.save_message(_record())
    with pytest.raises(PersistenceError):
        await repo.count()


async def test_sql_insert_ignores_conflicts():
    sessionmaker = _failing_sessionmaker()
    session = sessionmaker.return_value
    session.execute.side_effect = None
    repo = SqlMessageRepository(sessionmaker=sessionmaker)

    await repo.save_message(_record())

    stmt = session.execute.await_args.args[0]
    assert "ON CONFLICT (id) DO NOTHING" in str(stmt.compile(dialect=_pg_dialect()))
    session.commit.assert_awaited_once()


def _pg_dialect():
    from sqlalchemy.dialects import postgresql

    return postgresql.dialect()


async def test_unreachable_database_raises_persistence_error():
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    engine = create_async_engine("postgresql+asyncpg://u:p@127.0.0.1:1/db")
    repo = SqlMessageRepository(sessionmaker=async_sessionmaker(engine))
    try:
        with pytest.raises(PersistenceError):
            await repo.save_message(_record())
        with pytest.raises(PersistenceError):
            await repo.get_by_id(uuid.uuid4())
    finally:
        await engine.dispose()


async def test_socket_errors_become_persistence_errors():
    sessionmaker = _failing_sessionmaker()
    sessionmaker.return_value.execute.side_effect = ConnectionRefusedError(111, "Connect call failed")
    repo = SqlMessageRepository(sessionmaker=sessionmaker)

    with pytest.raises(PersistenceError, match="Connect call failed"):
        await repo.update_status(uuid.uuid4(), MessageStatus.DEAD_LETTER)
    with pytest.raises(PersistenceError):
        await repo.get_by_filter(MessageFilter())
