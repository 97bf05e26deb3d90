# db/repository.py
"""Persistence collaborator of the pipeline.

``save_message`` is idempotent on :attr:`ProcessedMessage.id`: saving the
same id twice keeps the first record, so the pipeline may retry it freely.
Every storage failure surfaces as :class:`libs.errors.PersistenceError`.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from db.models import SwiftMessageRecord
from libs.config import Settings, get_settings
from libs.errors import PersistenceError
from libs.models import MessageFilter, MessageStatus, MT103Message, ProcessedMessage, get_md5_hash

logger = logging.getLogger(__name__)

# asyncpg raises plain socket errors when the server is unreachable
_STORAGE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

__all__ = [
    "MessageRepository",
    "InMemoryMessageRepository",
    "SqlMessageRepository",
    "create_repository",
]


class MessageRepository(ABC):
    @abstractmethod
    async def save_message(self, message: ProcessedMessage) -> uuid.UUID: ...

    @abstractmethod
    async def get_by_id(self, message_id: uuid.UUID) -> Optional[ProcessedMessage]: ...

    @abstractmethod
    async def get_by_filter(self, flt: MessageFilter) -> list[ProcessedMessage]:
        """Newest first, paged by ``skip``/``take``."""

    @abstractmethod
    async def count(self, flt: Optional[MessageFilter] = None) -> int: ...

    @abstractmethod
    async def update_status(
        self, message_id: uuid.UUID, status: MessageStatus, *, error_details: Optional[str] = None
    ) -> bool:
        """``False`` when no record has that id."""


def _matches(message: ProcessedMessage, flt: MessageFilter) -> bool:
    if flt.status is not None and message.status != flt.status:
        return False
    if flt.message_type is not None and message.message_type != flt.message_type:
        return False
    if flt.from_date is not None and message.processed_at < flt.from_date:
        return False
    if flt.to_date is not None and message.processed_at > flt.to_date:
        return False
    return True


class InMemoryMessageRepository(MessageRepository):
    def __init__(self) -> None:
        self._records: dict[uuid.UUID, ProcessedMessage] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def save_message(self, message: ProcessedMessage) -> uuid.UUID:
        async with self._lock:
            if message.id in self._records:
                logger.debug("Message %s already stored, skipping", message.id)
            else:
                self._records[message.id] = message
        return message.id

    async def get_by_id(self, message_id: uuid.UUID) -> Optional[ProcessedMessage]:
        return self._records.get(message_id)

    async def get_by_filter(self, flt: MessageFilter) -> list[ProcessedMessage]:
        found = [m for m in self._records.values() if _matches(m, flt)]
        found.sort(key=lambda m: m.processed_at, reverse=True)
        return found[flt.skip : flt.skip + flt.take]

    async def count(self, flt: Optional[MessageFilter] = None) -> int:
        if flt is None:
            return len(self._records)
        return sum(1 for m in self._records.values() if _matches(m, flt))

    async def update_status(
        self, message_id: uuid.UUID, status: MessageStatus, *, error_details: Optional[str] = None
    ) -> bool:
        async with self._lock:
            current = self._records.get(message_id)
            if current is None:
                return False
            changes: dict = {"status": status}
            if error_details is not None:
                changes["error_details"] = error_details
            self._records[message_id] = current.model_copy(update=changes)
        return True


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------
def _to_row(message: ProcessedMessage) -> dict:
    parsed = message.parsed
    return {
        "id": message.id,
        "message_type": message.message_type,
        "raw_message": message.raw_message,
        "raw_md5": get_md5_hash(message.raw_message),
        "status": message.status.value,
        "processed_at": message.processed_at,
        "transaction_reference": parsed.transaction_reference if parsed else None,
        "currency": parsed.currency if parsed else None,
        "amount": parsed.amount if parsed else None,
        "parsed": parsed.model_dump(mode="json") if parsed else None,
        "error_details": message.error_details,
        "meta": message.metadata or None,
    }


def _from_row(row: SwiftMessageRecord) -> ProcessedMessage:
    return ProcessedMessage(
        id=row.id,
        message_type=row.message_type,
        raw_message=row.raw_message,
        parsed=MT103Message.model_validate(row.parsed) if row.parsed else None,
        status=MessageStatus(row.status),
        processed_at=row.processed_at,
        error_details=row.error_details,
        metadata=row.meta or {},
    )


class SqlMessageRepository(MessageRepository):
    """SQLAlchemy async repository (asyncpg driver)."""

    def __init__(self, sessionmaker: async_sessionmaker | None = None) -> None:
        self._sessionmaker = sessionmaker

    def _session(self):
        if self._sessionmaker is None:
            from db.session import get_sessionmaker

            self._sessionmaker = get_sessionmaker()
        return self._sessionmaker()

    @staticmethod
    def _where(stmt, flt: Optional[MessageFilter]):
        if flt is None:
            return stmt
        if flt.status is not None:
            stmt = stmt.where(SwiftMessageRecord.status == flt.status.value)
        if flt.message_type is not None:
            stmt = stmt.where(SwiftMessageRecord.message_type == flt.message_type)
        if flt.from_date is not None:
            stmt = stmt.where(SwiftMessageRecord.processed_at >= flt.from_date)
        if flt.to_date is not None:
            stmt = stmt.where(SwiftMessageRecord.processed_at <= flt.to_date)
        return stmt

    async def save_message(self, message: ProcessedMessage) -> uuid.UUID:
        stmt = (
            insert(SwiftMessageRecord)
            .values(**_to_row(message))
            .on_conflict_do_nothing(index_elements=["id"])
        )
        try:
            async with self._session() as sess:
                await sess.execute(stmt)
                await sess.commit()
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to save message {message.id}: {exc}") from exc
        return message.id

    async def get_by_id(self, message_id: uuid.UUID) -> Optional[ProcessedMessage]:
        try:
            async with self._session() as sess:
                row = await sess.get(SwiftMessageRecord, message_id)
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to load message {message_id}: {exc}") from exc
        return _from_row(row) if row is not None else None

    async def get_by_filter(self, flt: MessageFilter) -> list[ProcessedMessage]:
        stmt = self._where(select(SwiftMessageRecord), flt)
        stmt = stmt.order_by(SwiftMessageRecord.processed_at.desc()).offset(flt.skip).limit(flt.take)
        try:
            async with self._session() as sess:
                rows = (await sess.execute(stmt)).scalars().all()
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to query messages: {exc}") from exc
        return [_from_row(r) for r in rows]

    async def count(self, flt: Optional[MessageFilter] = None) -> int:
        stmt = self._where(select(func.count()).select_from(SwiftMessageRecord), flt)
        try:
            async with self._session() as sess:
                return int((await sess.execute(stmt)).scalar_one())
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to count messages: {exc}") from exc

    async def update_status(
        self, message_id: uuid.UUID, status: MessageStatus, *, error_details: Optional[str] = None
    ) -> bool:
        values: dict = {"status": status.value}
        if error_details is not None:
            values["error_details"] = error_details
        stmt = update(SwiftMessageRecord).where(SwiftMessageRecord.id == message_id).values(**values)
        try:
            async with self._session() as sess:
                result = await sess.execute(stmt)
                await sess.commit()
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to update status of {message_id}: {exc}") from exc
        return result.rowcount > 0


def create_repository(settings: Settings | None = None) -> MessageRepository:
    """Backend chosen by ``STORAGE_BACKEND``."""
    settings = settings or get_settings()
    if settings.storage_backend == "postgres":
        return SqlMessageRepository()
    return InMemoryMessageRepository()
