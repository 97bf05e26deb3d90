# libs/regexes.py
"""Single point of truth for **all** regular-expression patterns of the SWIFT
wire format.

Both tables are built once at import time and exposed read-only
(:class:`types.MappingProxyType`); parsers receive them by reference in their
constructor.  Supporting a new field = add one row to :data:`FIELD_PATTERNS`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

# ---------------------------------------------------------------------------
# Common parts
# ---------------------------------------------------------------------------
BIC_RE = r"[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}(?:[A-Z0-9]{3})?"
CURRENCY_RE = r"[A-Z]{3}"
# a new field starts with ":<2 digits><optional letter>:" at the start of a line
NEXT_TAG_RE = r"\n:\d{2}[A-Z]?:"

BIC_FULL_RE = re.compile(rf"^{BIC_RE}$")
CURRENCY_FULL_RE = re.compile(rf"^{CURRENCY_RE}$")
FIELD_TAG_RE = re.compile(r"^:(?P<tag>\d{2}[A-Z]?):", re.MULTILINE)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------
BLOCK_PATTERNS: Mapping[str, re.Pattern[str]] = MappingProxyType(
    {
        "block1": re.compile(r"\{1:(?P<content>[^}]+)\}"),
        "block2": re.compile(r"\{2:(?P<content>[^}]+)\}"),
        "block3": re.compile(r"\{3:(?P<content>(?:\{[^}]+\})*)\}"),
        # text block spans many lines and ends with "-}"
        "block4": re.compile(r"\{4:\s*(?P<content>.*?)\s*-\}", re.DOTALL),
        "block5": re.compile(r"\{5:(?P<content>(?:\{[^}]+\})*)\}"),
    }
)

# {2:I103RECEIVERXXXXN} / {2:O1031200...} – type follows the I/O flag
BLOCK2_TYPE_RE = re.compile(r"^\{2:[IO](?P<type>\d{3})")


# ---------------------------------------------------------------------------
# Fields (block 4)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FieldPattern:
    """``locate`` finds the raw value in block 4, ``value`` checks its format."""

    tag: str
    name: str
    locate: re.Pattern[str]
    value: re.Pattern[str]


def _field(tag: str, name: str, value: str, flags: int = 0) -> FieldPattern:
    # anchored at line start; lazy capture up to the next tag or block end
    locate = re.compile(
        rf"^:{tag}:(?P<value>.*?)(?={NEXT_TAG_RE}|\Z)", re.MULTILINE | re.DOTALL
    )
    return FieldPattern(tag=tag, name=name, locate=locate, value=re.compile(value, flags))


_PARTY_BIC = rf"(?:/(?P<party>[^\n]*)\n)?(?P<bic>{BIC_RE})"
_PARTY_LOCATION = r"(?:/(?P<party>[^\n]*))?(?:\n?(?P<location>[^\n]+))?"
_CHARGES = rf"(?P<currency>{CURRENCY_RE})(?P<amount>[^\n]+)"
_FREE_TEXT = r"(?P<content>.+)"

FIELD_PATTERNS: Mapping[str, FieldPattern] = MappingProxyType(
    {
        p.tag: p
        for p in (
            # --- mandatory ---------------------------------------------------
            _field("20", "Transaction Reference", r"(?P<reference>[^\n]+)"),
            _field("23B", "Bank Operation Code", r"(?P<code>[A-Z]{4})"),
            _field(
                "32A",
                "Value Date/Currency/Amount",
                r"(?P<date>[^\n]{6})(?P<currency>[^\n]{3})(?P<amount>[^\n]+)",
            ),
            _field("50A", "Ordering Customer", rf"(?:/(?P<account>[^\n]*)\n)?(?P<bic>{BIC_RE})"),
            _field("50K", "Ordering Customer", _FREE_TEXT, re.DOTALL),
            _field("59A", "Beneficiary Customer", rf"(?:/(?P<account>[^\n]*)\n)?(?P<bic>{BIC_RE})"),
            _field("59", "Beneficiary Customer", _FREE_TEXT, re.DOTALL),
            # --- optional ----------------------------------------------------
            _field("33B", "Currency/Instructed Amount", _CHARGES),
            _field("52A", "Ordering Institution", _PARTY_BIC),
            _field("53A", "Sender's Correspondent", _PARTY_BIC),
            _field("53B", "Sender's Correspondent", _PARTY_LOCATION),
            _field("54A", "Receiver's Correspondent", _PARTY_BIC),
            _field("56A", "Intermediary Institution", _PARTY_BIC),
            _field("56C", "Intermediary Institution", r"/(?P<account>[^\n]+)"),
            _field("56D", "Intermediary Institution", _FREE_TEXT, re.DOTALL),
            _field("57A", "Account With Institution", _PARTY_BIC),
            _field("57B", "Account With Institution", _PARTY_LOCATION),
            _field("57C", "Account With Institution", r"/(?P<account>[^\n]+)"),
            _field("57D", "Account With Institution", _FREE_TEXT, re.DOTALL),
            _field("70", "Remittance Information", _FREE_TEXT, re.DOTALL),
            _field("71A", "Details of Charges", r"(?P<code>[A-Z]{3})"),
            _field("71F", "Sender's Charges", _CHARGES),
            _field("71G", "Receiver's Charges", _CHARGES),
            _field("72", "Sender to Receiver Information", _FREE_TEXT, re.DOTALL),
        )
    }
)


__all__ = [
    "BIC_RE",
    "BIC_FULL_RE",
    "CURRENCY_FULL_RE",
    "FIELD_TAG_RE",
    "BLOCK_PATTERNS",
    "BLOCK2_TYPE_RE",
    "FieldPattern",
    "FIELD_PATTERNS",
]
