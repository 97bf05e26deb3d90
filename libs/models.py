# libs/models.py
"""Domain models shared by all services.

The system intentionally passes around *only* these objects (JSON-serialised)
across the queues and the storage layer so every component speaks the same
language.

Levels
------
1. **raw text** – exactly what arrived on the input queue; it is never
   modified and is forwarded verbatim.
2. **MT103Message** – result of the deterministic block/field parse. This is
   what the validator checks and the repository stores.
3. **ProcessedMessage / DeadLetterEnvelope** – what leaves the pipeline.

Design note: Pydantic v2 (BaseModel) gives full validation and a convenient
JSON dump (`model_dump_json()`).  Services should work with these classes
directly, avoiding ad-hoc dicts.
"""
from __future__ import annotations

import datetime as _dt
import hashlib
import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "ChargeBearer",
    "MessageStatus",
    "ProcessingStage",
    "ErrorKind",
    "BicCustomer",
    "NameCustomer",
    "Customer",
    "ChargeDetails",
    "SwiftMessage",
    "MT103Message",
    "Violation",
    "ValidationResult",
    "ProcessingResult",
    "ProcessingMetrics",
    "ProcessedMessage",
    "MessageFilter",
    "DeadLetterEnvelope",
    "QueueStatistics",
    "ProcessorStatus",
    "get_md5_hash",
]


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


class ChargeBearer(str, Enum):
    """Who pays the transaction charges (field 71A)."""

    OUR = "OUR"  # sender
    SHA = "SHA"  # shared
    BEN = "BEN"  # beneficiary


class MessageStatus(str, Enum):
    """Status of a persisted record."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"
    ARCHIVED = "archived"


class ProcessingStage(str, Enum):
    RECEIVED = "received"
    PARSING = "parsing"
    VALIDATING = "validating"
    PERSISTING = "persisting"
    ROUTING = "routing"
    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"


class ErrorKind(str, Enum):
    PARSING = "parsing"
    VALIDATION = "validation"
    PERSISTENCE = "persistence"
    ROUTING = "routing"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Customers (fields 50 / 59) – tagged variant
# ---------------------------------------------------------------------------


class BicCustomer(BaseModel):
    """Option A: optional account + BIC, no name."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["bic"] = "bic"
    account: Optional[str] = None
    bic: str


class NameCustomer(BaseModel):
    """Option K (field 50) / no letter option (field 59): name and address."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["name"] = "name"
    account: Optional[str] = None
    name: str = ""
    address: str = Field("", description="Lines joined with '\\n'")


Customer = Annotated[Union[BicCustomer, NameCustomer], Field(discriminator="kind")]


class ChargeDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    charge_bearer: ChargeBearer
    charge_amount: Optional[Decimal] = None
    charge_currency: Optional[str] = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class SwiftMessage(BaseModel):
    """Common part of every SWIFT message type."""

    model_config = ConfigDict(frozen=True)

    message_type: str
    raw_message: str = Field(..., description="Original wire text")
    received_at: _dt.datetime = Field(default_factory=_utcnow)
    # tag -> raw value, blocks included (block1..block5); audit/diagnostics only
    fields: dict[str, str] = Field(default_factory=dict)


class MT103Message(SwiftMessage):
    """Single customer credit transfer."""

    message_type: Literal["MT103"] = "MT103"

    # --- mandatory -----------------------------------------------------------
    transaction_reference: str  # 20
    bank_operation_code: str  # 23B
    value_date: _dt.date  # 32A
    currency: str  # 32A, ISO 4217
    amount: Decimal  # 32A
    ordering_customer: Customer  # 50A / 50K
    beneficiary_customer: Customer  # 59A / 59

    # --- optional ------------------------------------------------------------
    original_currency: Optional[str] = None  # 33B
    original_amount: Optional[Decimal] = None  # 33B
    ordering_institution: Optional[str] = None  # 52A
    senders_correspondent: Optional[str] = None  # 53A/B
    receivers_correspondent: Optional[str] = None  # 54A
    intermediary_institution: Optional[str] = None  # 56A/C/D
    account_with_institution: Optional[str] = None  # 57A/B/C/D
    remittance_information: Optional[str] = None  # 70
    charge_details: Optional[ChargeDetails] = None  # 71A
    senders_charges: Optional[str] = None  # 71F, "EUR10.50"
    receivers_charges: Optional[str] = None  # 71G
    sender_to_receiver_info: Optional[str] = None  # 72


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


class Violation(BaseModel):
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


class ValidationResult(BaseModel):
    violations: list[Violation] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def describe(self) -> str:
        return "; ".join(str(v) for v in self.violations)


class ProcessingResult(BaseModel):
    success: bool
    message_id: Optional[uuid.UUID] = None
    stage: ProcessingStage
    failed_stage: Optional[ProcessingStage] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None
    attempts: int = 1


class ProcessingMetrics(BaseModel):
    processed: int = 0
    failed: int = 0
    average_processing_ms: float = 0.0
    errors_by_kind: dict[str, int] = Field(default_factory=dict)
    started_at: _dt.datetime = Field(default_factory=_utcnow)
    last_updated: Optional[_dt.datetime] = None


class ProcessedMessage(BaseModel):
    """Unit of persistence."""

    id: uuid.UUID
    message_type: str
    raw_message: str
    parsed: Optional[MT103Message] = None
    status: MessageStatus = MessageStatus.PENDING
    processed_at: _dt.datetime = Field(default_factory=_utcnow)
    error_details: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MessageFilter(BaseModel):
    skip: int = Field(0, ge=0)
    take: int = Field(20, ge=1, le=1000)
    status: Optional[MessageStatus] = None
    from_date: Optional[_dt.datetime] = None
    to_date: Optional[_dt.datetime] = None
    message_type: Optional[str] = None


class DeadLetterEnvelope(BaseModel):
    """Fixed shape of everything published to the dead-letter queue."""

    message_id: Optional[uuid.UUID] = None
    raw_payload: str
    failure_stage: ProcessingStage
    error_kind: ErrorKind
    diagnostic: str
    attempts: int = 1
    failed_at: _dt.datetime = Field(default_factory=_utcnow)


class QueueStatistics(BaseModel):
    depth: int = 0
    processed: int = 0
    failed: int = 0
    last_updated: _dt.datetime = Field(default_factory=_utcnow)


class ProcessorStatus(BaseModel):
    state: str
    is_polling: bool
    last_processed_at: Optional[_dt.datetime] = None
    queued: int = 0
    processed: int = 0
    failed: int = 0
    average_processing_ms: float = 0.0
    queue_healthy: bool = True
    status_updated_at: _dt.datetime = Field(default_factory=_utcnow)


def get_md5_hash(input_string: str) -> str:
    """
    MD5 digest of a string.

    Args:
      input_string: string to hash.

    Returns:
      hex digest.
    """
    return hashlib.md5(input_string.encode("utf-8")).hexdigest()
