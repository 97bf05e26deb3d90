# libs/validator.py
"""Business rules for an already parsed MT103.

:func:`validate_mt103` never raises and never mutates the message – it only
collects :class:`libs.models.Violation` objects.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, Optional

from libs.models import (
    BicCustomer,
    ChargeBearer,
    Customer,
    MT103Message,
    NameCustomer,
    ValidationResult,
    Violation,
)
from libs.regexes import BIC_FULL_RE, CURRENCY_FULL_RE

__all__ = [
    "validate_mt103",
    "VALID_BANK_OPERATION_CODES",
    "MAX_SWIFT_AMOUNT",
]

VALID_BANK_OPERATION_CODES = frozenset({"CRED", "CRTS", "SPAY", "SPRI", "SSTD"})
MAX_SWIFT_AMOUNT = Decimal("999999999999.99")
MAX_REFERENCE_LENGTH = 16
MAX_ACCOUNT_LENGTH = 34
LINE_LENGTH = 35

_Add = Callable[[str, str], None]


def validate_mt103(message: MT103Message) -> ValidationResult:
    violations: list[Violation] = []

    def add(field: str, reason: str) -> None:
        violations.append(Violation(field=field, reason=reason))

    # --- 20 / 23B --------------------------------------------------------------
    reference = message.transaction_reference
    if not reference or not reference.strip():
        add("20", "transaction reference is required")
    elif len(reference) > MAX_REFERENCE_LENGTH:
        add("20", f"transaction reference exceeds {MAX_REFERENCE_LENGTH} characters")

    if message.bank_operation_code not in VALID_BANK_OPERATION_CODES:
        add(
            "23B",
            f"unknown bank operation code {message.bank_operation_code!r} "
            f"(expected one of {', '.join(sorted(VALID_BANK_OPERATION_CODES))})",
        )

    # --- 32A -------------------------------------------------------------------
    if not _is_currency(message.currency):
        add("32A", f"currency {message.currency!r} must be a 3-letter ISO 4217 code")
    if message.amount <= 0:
        add("32A", "amount must be greater than zero")
    elif message.amount > MAX_SWIFT_AMOUNT:
        add("32A", f"amount exceeds SWIFT maximum {MAX_SWIFT_AMOUNT}")

    # --- 33B -------------------------------------------------------------------
    _check_original_amount(message, add)

    # --- 50 / 59 ---------------------------------------------------------------
    _check_customer(message.ordering_customer, "50", add)
    _check_customer(message.beneficiary_customer, "59", add)

    # --- institutions ----------------------------------------------------------
    for prefix, value in (
        ("52", message.ordering_institution),
        ("53", message.senders_correspondent),
        ("54", message.receivers_correspondent),
        ("56", message.intermediary_institution),
        ("57", message.account_with_institution),
    ):
        _check_institution(message, prefix, value, add)

    # --- 70 / 72 ---------------------------------------------------------------
    _check_lines(message.remittance_information, "70", 4, add)
    _check_lines(message.sender_to_receiver_info, "72", 6, add)

    # --- 71A -------------------------------------------------------------------
    _check_charges(message, add)

    return ValidationResult(violations=violations)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------
def _is_currency(value: Optional[str]) -> bool:
    return bool(value) and CURRENCY_FULL_RE.match(value) is not None


def _check_original_amount(message: MT103Message, add: _Add) -> None:
    currency, amount = message.original_currency, message.original_amount
    if currency is None and amount is None:
        return
    if currency is None or amount is None:
        add("33B", "original currency and original amount must appear together")
    if currency is not None:
        if not _is_currency(currency):
            add("33B", f"original currency {currency!r} must be a 3-letter ISO 4217 code")
        elif currency == message.currency:
            add("33B", "original currency must differ from settlement currency")
    if amount is not None and amount <= 0:
        add("33B", "original amount must be greater than zero")


def _check_customer(customer: Customer, field: str, add: _Add) -> None:
    if isinstance(customer, BicCustomer):
        if not customer.bic or BIC_FULL_RE.match(customer.bic) is None:
            add(field, f"BIC form requires a valid BIC, got {customer.bic!r}")
    elif isinstance(customer, NameCustomer):
        name, address = customer.name.strip(), customer.address.strip()
        if not name and not address:
            add(field, "name form requires a name or an address")
        else:
            lines = [name] + (address.split("\n") if address else [])
            if len(lines) > 4 or any(len(line) > LINE_LENGTH for line in lines):
                add(field, f"name and address must not exceed 4 lines of {LINE_LENGTH} characters")
    else:  # pragma: no cover – union is closed
        add(field, f"unsupported customer form {type(customer).__name__}")

    if customer.account is not None and len(customer.account) > MAX_ACCOUNT_LENGTH:
        add(field, f"account exceeds {MAX_ACCOUNT_LENGTH} characters")


def _check_institution(message: MT103Message, prefix: str, value: Optional[str], add: _Add) -> None:
    """Only option A carries a BIC; B/C/D hold free text."""
    if not value:
        return
    options = [tag for tag in message.fields if tag[:2] == prefix and len(tag) == 3]
    if options and options != [f"{prefix}A"]:
        return
    if BIC_FULL_RE.match(value) is None:
        add(f"{prefix}A", f"{value!r} is not a valid BIC")


def _check_lines(value: Optional[str], field: str, max_lines: int, add: _Add) -> None:
    if not value:
        return
    lines = value.split("\n")
    if len(lines) > max_lines or any(len(line) > LINE_LENGTH for line in lines):
        add(field, f"must not exceed {max_lines} lines of {LINE_LENGTH} characters")


def _check_charges(message: MT103Message, add: _Add) -> None:
    raw_code = message.fields.get("71A")
    if raw_code is not None and raw_code not in ChargeBearer.__members__:
        add("71A", f"unknown charge bearer {raw_code!r} (expected OUR, SHA or BEN)")

    details = message.charge_details
    if details is None:
        return
    if not isinstance(details.charge_bearer, ChargeBearer):  # pragma: no cover – model-typed
        add("71A", f"unknown charge bearer {details.charge_bearer!r}")
    if (details.charge_amount is None) != (details.charge_currency is None):
        add("71A", "charge amount and charge currency must appear together")
    if details.charge_currency is not None and not _is_currency(details.charge_currency):
        add("71A", f"charge currency {details.charge_currency!r} must be a 3-letter ISO 4217 code")
    if details.charge_amount is not None and details.charge_amount < 0:
        add("71A", "charge amount must not be negative")
