# db/models.py
import uuid
from datetime import datetime as dt
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SwiftMessageRecord(Base):
    __tablename__ = "swift_messages"

    # id is assigned when the message is received, so retries reuse it
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    message_type: Mapped[str] = mapped_column(String(10), nullable=False)
    raw_message: Mapped[str] = mapped_column(Text, nullable=False)
    raw_md5: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[dt] = mapped_column(DateTime(timezone=True), nullable=False)

    # denormalised columns of the parsed message, for filtering
    transaction_reference: Mapped[str | None] = mapped_column(String(16))
    currency: Mapped[str | None] = mapped_column(String(3))
    amount: Mapped[Decimal | None] = mapped_column(Numeric(17, 2))

    parsed: Mapped[dict | None] = mapped_column(JSON)
    error_details: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON)

    __table_args__ = (
        Index("idx_swift_status", "status"),
        Index("idx_swift_processed_at", "processed_at"),
        Index("idx_swift_reference", "transaction_reference"),
    )
