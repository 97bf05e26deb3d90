# libs/parser.py
"""Deterministic SWIFT parser: raw wire text → :class:`libs.models.MT103Message`.

Three layers, leaf-first:

* :class:`BlockParser`    – splits the raw text into blocks 1–5;
* :class:`FieldExtractor` – finds tagged fields inside block 4;
* :class:`MT103Parser`    – builds the typed message out of the fields.

All regular expressions live in :mod:`libs.regexes`; the tables are handed to
the constructors by reference, nothing is compiled per call.

Failures raise :class:`libs.errors.ParsingError` carrying the offending block
or field tag, e.g. ``"Missing mandatory field 23B (Bank Operation Code)"``.
"""
from __future__ import annotations

import datetime as _dt
import re
from abc import ABC, abstractmethod
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from libs.decimal_utils import parse_swift_decimal
from libs.errors import ParsingError
from libs.models import (
    BicCustomer,
    ChargeBearer,
    ChargeDetails,
    Customer,
    MT103Message,
    NameCustomer,
    SwiftMessage,
)
from libs.regexes import BLOCK2_TYPE_RE, BLOCK_PATTERNS, FIELD_PATTERNS, FieldPattern

__all__ = [
    "BlockParser",
    "FieldExtractor",
    "BaseMessageParser",
    "MT103Parser",
    "get_parser",
    "parse_mt103",
    "detect_message_type",
    "normalize_line_endings",
]

# two-digit years 00-49 are 20YY, 50-99 are 19YY
CENTURY_PIVOT = 49

_REQUIRED_BLOCKS = (
    ("block1", "Block 1 (Basic Header)"),
    ("block2", "Block 2 (Application Header)"),
    ("block4", "Block 4 (Text Block)"),
)


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def detect_message_type(block2: str) -> Optional[str]:
    """``"{2:I103CHASUS33XXXXN}" -> "103"``; ``None`` if the header is unreadable."""
    match = BLOCK2_TYPE_RE.match(block2)
    return match["type"] if match else None


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


class BlockParser:
    """Locates the five standard blocks. Pure function of the input text."""

    def __init__(
        self,
        patterns: Mapping[str, re.Pattern[str]] = BLOCK_PATTERNS,
        *,
        expected_type: Optional[str] = "103",
    ) -> None:
        self._patterns = patterns
        self._expected_type = expected_type

    def parse(self, raw_message: str) -> dict[str, str]:
        """Returns ``{"block1": "{1:...}", "block2": ..., "block4": "<text>", ...}``.

        Block 4 is returned as its inner text (between ``{4:`` and ``-}``),
        the other blocks as they appear on the wire.
        """
        if not raw_message or not raw_message.strip():
            raise ParsingError("Raw message cannot be empty", field="message")

        text = normalize_line_endings(raw_message)
        blocks: dict[str, str] = {}
        for name, pattern in self._patterns.items():
            if match := pattern.search(text):
                blocks[name] = match["content"].strip() if name == "block4" else match.group(0)

        for name, title in _REQUIRED_BLOCKS:
            if name not in blocks:
                raise ParsingError(f"Missing required {title}", field=name)

        if self._expected_type is not None:
            found = detect_message_type(blocks["block2"])
            if found != self._expected_type:
                raise ParsingError(
                    f"Block 2 does not indicate MT{self._expected_type} message type "
                    f"(found {found or 'none'})",
                    field="block2",
                )
        return blocks


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


class FieldExtractor:
    """Finds fields of block 4 using the static :data:`FIELD_PATTERNS` table."""

    def __init__(self, patterns: Mapping[str, FieldPattern] = FIELD_PATTERNS) -> None:
        self._patterns = patterns

    def raw(self, text_block: str, tag: str) -> Optional[str]:
        """Raw value of *tag* (first occurrence) or ``None`` when absent/empty."""
        match = self._patterns[tag].locate.search(text_block)
        if match is None:
            return None
        value = match["value"].strip()
        return value or None

    def match(self, text_block: str, tag: str) -> Optional[re.Match[str]]:
        """Format-checked value of an optional field.

        Absent → ``None``; present but malformed → :class:`ParsingError`.
        """
        value = self.raw(text_block, tag)
        if value is None:
            return None
        pattern = self._patterns[tag]
        match = pattern.value.fullmatch(value)
        if match is None:
            raise ParsingError(f"Malformed field {tag} ({pattern.name}): {value!r}", field=tag)
        return match

    def fullmatch(self, tag: str, value: str) -> Optional[re.Match[str]]:
        return self._patterns[tag].value.fullmatch(value)

    def require(self, text_block: str, tag: str) -> re.Match[str]:
        """Same as :meth:`match`, but absence is an error too."""
        match = self.match(text_block, tag)
        if match is None:
            raise ParsingError(
                f"Missing mandatory field {tag} ({self._patterns[tag].name})", field=tag
            )
        return match

    def collect(self, text_block: str) -> dict[str, str]:
        """All known tags present in block 4 – for the audit field map."""
        found: dict[str, str] = {}
        for tag in self._patterns:
            value = self.raw(text_block, tag)
            if value is not None:
                found[tag] = value
        return found


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class BaseMessageParser(ABC):
    """One parser per SWIFT message type; see :func:`get_parser`."""

    message_type: str

    def can_parse(self, message_type: Optional[str]) -> bool:
        if not message_type:
            return False
        wanted = message_type.strip().upper()
        return wanted in (self.message_type, self.message_type.removeprefix("MT"))

    @abstractmethod
    def parse(
        self, raw_message: str, *, received_at: Optional[_dt.datetime] = None
    ) -> SwiftMessage:
        """Parse *raw_message*; raise :class:`ParsingError` on any problem."""


class MT103Parser(BaseMessageParser):
    """Single customer credit transfer."""

    message_type = "MT103"

    def __init__(
        self,
        field_patterns: Mapping[str, FieldPattern] = FIELD_PATTERNS,
        block_patterns: Mapping[str, re.Pattern[str]] = BLOCK_PATTERNS,
    ) -> None:
        self._blocks = BlockParser(block_patterns, expected_type="103")
        self._fields = FieldExtractor(field_patterns)

    def parse(
        self, raw_message: str, *, received_at: Optional[_dt.datetime] = None
    ) -> MT103Message:
        blocks = self._blocks.parse(raw_message)
        text = blocks["block4"]
        f = self._fields

        # --- mandatory -------------------------------------------------------
        reference = f.require(text, "20")["reference"].strip()
        bank_operation_code = f.require(text, "23B")["code"]
        value_date, currency, amount = self._parse_32a(f.require(text, "32A"))
        ordering_customer = self._parse_customer(text, bic_tag="50A", name_tag="50K", field="50",
                                                 title="Ordering Customer")
        beneficiary_customer = self._parse_customer(text, bic_tag="59A", name_tag="59", field="59",
                                                    title="Beneficiary Customer")

        # --- optional --------------------------------------------------------
        original_currency = original_amount = None
        if m := f.match(text, "33B"):
            original_currency = m["currency"]
            original_amount = _amount(m["amount"], "33B")

        senders_charges, senders_charge = self._parse_charges(f.match(text, "71F"), "71F")
        receivers_charges, receivers_charge = self._parse_charges(f.match(text, "71G"), "71G")

        charge_details = None
        if m := f.match(text, "71A"):
            if m["code"] in ChargeBearer.__members__:
                bearer = ChargeBearer(m["code"])
                # OUR → receiver's charges are claimed; SHA/BEN → sender's charges deducted
                charge = receivers_charge if bearer is ChargeBearer.OUR else senders_charge
                charge_details = ChargeDetails(
                    charge_bearer=bearer,
                    charge_currency=charge[0] if charge else None,
                    charge_amount=charge[1] if charge else None,
                )
            # unknown codes stay in the raw field map; the validator reports them

        fields = dict(blocks)
        fields.update(f.collect(text))

        extra = {} if received_at is None else {"received_at": received_at}
        return MT103Message(
            raw_message=raw_message,
            fields=fields,
            transaction_reference=reference,
            bank_operation_code=bank_operation_code,
            value_date=value_date,
            currency=currency,
            amount=amount,
            ordering_customer=ordering_customer,
            beneficiary_customer=beneficiary_customer,
            original_currency=original_currency,
            original_amount=original_amount,
            ordering_institution=self._parse_bic_option(text, "52A"),
            senders_correspondent=self._first_of(text, "53A", "53B"),
            receivers_correspondent=self._parse_bic_option(text, "54A"),
            intermediary_institution=self._first_of(text, "56A", "56C", "56D"),
            account_with_institution=self._first_of(text, "57A", "57B", "57C", "57D"),
            remittance_information=self._free_text(text, "70"),
            charge_details=charge_details,
            senders_charges=senders_charges,
            receivers_charges=receivers_charges,
            sender_to_receiver_info=self._free_text(text, "72"),
            **extra,
        )

    # ------------------------------------------------------------------ helpers

    @staticmethod
    def _parse_32a(match: re.Match[str]) -> tuple[_dt.date, str, Decimal]:
        return _to_value_date(match["date"]), match["currency"], _amount(match["amount"], "32A")

    def _parse_customer(
        self, text: str, *, bic_tag: str, name_tag: str, field: str, title: str
    ) -> Customer:
        """BIC form first, then name form; neither → mandatory field missing."""
        bic_value = self._fields.raw(text, bic_tag)
        if bic_value is not None:
            m = self._fields.fullmatch(bic_tag, bic_value)
            if m is not None:
                return BicCustomer(account=m["account"] or None, bic=m["bic"])

        name_value = self._fields.raw(text, name_tag)
        if name_value is not None:
            customer = _name_form(name_value)
            if customer is not None:
                return customer

        raise ParsingError(f"Missing mandatory field {field} ({title})", field=field)

    def _parse_bic_option(self, text: str, tag: str) -> Optional[str]:
        m = self._fields.match(text, tag)
        return m["bic"] if m else None

    def _first_of(self, text: str, *tags: str) -> Optional[str]:
        """First present option of a party field (A, then B, C, D)."""
        for tag in tags:
            m = self._fields.match(text, tag)
            if m is None:
                continue
            option = tag[-1]
            if option == "A":
                return m["bic"]
            if option == "B":
                return m["location"] or m["party"]
            if option == "C":
                return m["account"]
            return m["content"].strip()
        return None

    def _free_text(self, text: str, tag: str) -> Optional[str]:
        m = self._fields.match(text, tag)
        return m["content"].strip() if m else None

    @staticmethod
    def _parse_charges(
        match: Optional[re.Match[str]], tag: str
    ) -> tuple[Optional[str], Optional[tuple[str, Decimal]]]:
        if match is None:
            return None, None
        amount = _amount(match["amount"], tag)
        return f"{match['currency']}{amount}", (match["currency"], amount)


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------
def _to_value_date(date_str: str) -> _dt.date:
    """``YYMMDD`` → :class:`datetime.date`; ``YY`` up to :data:`CENTURY_PIVOT` is 20YY, above it 19YY."""
    if not date_str.isdigit():
        raise ParsingError(f"Invalid value date in field 32A: {date_str!r} is not YYMMDD", field="32A")
    yy, month, day = int(date_str[:2]), int(date_str[2:4]), int(date_str[4:6])
    year = (2000 if yy <= CENTURY_PIVOT else 1900) + yy
    try:
        return _dt.date(year, month, day)
    except ValueError as exc:
        raise ParsingError(
            f"Invalid value date in field 32A: {date_str} is not a calendar date ({exc})",
            field="32A",
        ) from exc


def _amount(amount_str: str, tag: str) -> Decimal:
    try:
        return parse_swift_decimal(amount_str)
    except ValueError as exc:
        raise ParsingError(f"Invalid amount in field {tag}: {exc}", field=tag) from exc


def _name_form(value: str) -> Optional[NameCustomer]:
    """Optional ``/account`` line followed by name and address lines."""
    lines = [line.strip() for line in value.split("\n") if line.strip()]
    account = None
    if lines and lines[0].startswith("/"):
        account = lines.pop(0)[1:] or None
    if not lines:
        return None
    return NameCustomer(account=account, name=lines[0], address="\n".join(lines[1:]))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
_PARSERS: Mapping[str, BaseMessageParser] = MappingProxyType({"103": MT103Parser()})


def get_parser(message_type: str) -> BaseMessageParser:
    """``get_parser("MT103")`` / ``get_parser("103")``; other types are not supported yet."""
    for parser in _PARSERS.values():
        if parser.can_parse(message_type):
            return parser
    raise ParsingError(f"Unsupported message type {message_type!r}", field="block2")


def parse_mt103(raw_message: str) -> MT103Message:
    """Shortcut for the default MT103 parser."""
    return _PARSERS["103"].parse(raw_message)  # type: ignore[return-value]
