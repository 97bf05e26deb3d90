# libs/generator.py
"""Test-mode MT103 generator.

Produces random but well-formed :class:`MT103Message` objects, deliberately
broken variants of them, and their raw wire text.  A seeded
:class:`random.Random` makes every batch reproducible::

    gen = MT103Generator(seed=42)
    raw = [gen.to_raw(m) for m in gen.generate_batch(10, valid_percentage=80)]
"""
from __future__ import annotations

import datetime as _dt
import random
import re
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from libs.decimal_utils import format_swift_decimal
from libs.models import BicCustomer, ChargeBearer, ChargeDetails, Customer, MT103Message, NameCustomer
from libs.regexes import BIC_FULL_RE

__all__ = ["InvalidKind", "MT103Generator"]

CURRENCIES = ("USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "SGD")
BANK_OPERATION_CODES = ("CRED", "CRTS", "SPAY", "SPRI", "SSTD")
BICS = (
    "CHASUS33", "DEUTDEFF", "HSBCHKHH", "BNPAFRPP", "CITIUS33",
    "BARCGB22", "UBSWCHZH", "RBOSGB2L", "NATAAU33", "SCBLSGSG",
)
CUSTOMER_NAMES = (
    "ACME CORPORATION", "GLOBAL TRADING LTD", "TECH INNOVATIONS INC",
    "INTERNATIONAL EXPORTS", "FINANCIAL SERVICES GROUP", "MANUFACTURING CO",
    "RETAIL SOLUTIONS", "LOGISTICS PARTNERS", "ENERGY SYSTEMS", "HEALTHCARE PROVIDERS",
)
ADDRESSES = (
    "123 MAIN STREET\nNEW YORK NY 10001\nUSA",
    "45 OXFORD STREET\nLONDON W1D 1BS\nUNITED KINGDOM",
    "78 RUE DE RIVOLI\nPARIS 75001\nFRANCE",
    "12 BAHNHOFSTRASSE\nZURICH 8001\nSWITZERLAND",
    "56 ORCHARD ROAD\nSINGAPORE 238883\nSINGAPORE",
)
REMITTANCE_INFO = (
    "INVOICE 2024-001 PAYMENT",
    "CONTRACT SETTLEMENT Q4 2024",
    "MONTHLY SERVICE FEES",
    "GOODS SHIPMENT REF 12345",
    "CONSULTING SERVICES RENDERED",
)
SENDER_TO_RECEIVER_INFO = ("/ACC/PLEASE ADVISE BENEFICIARY", "/INS/CHASUS33", "/BNF/URGENT")
LOCATIONS = ("PARIS", "LONDON", "ZURICH", "NEW YORK", "FRANKFURT", "SINGAPORE", "TOKYO")
INSTITUTION_NAMES = (
    "BANK OF NOWHERE\nSOMEWHERE",
    "FIRST TRADE BANK\nMAIN SQUARE 1\nVIENNA",
    "COASTAL SAVINGS\nHARBOUR ROAD\nSYDNEY",
)

# wire options each institution field may take
PARTY_OPTIONS = {"52": "A", "53": "AB", "54": "A", "56": "ACD", "57": "ABCD"}
_IBAN_RE = re.compile(r"[A-Z]{2}\d{2}[A-Z0-9]{10,30}")


class InvalidKind(str, Enum):
    MISSING_TRANSACTION_REFERENCE = "missing_transaction_reference"
    INVALID_AMOUNT = "invalid_amount"
    MISSING_CURRENCY = "missing_currency"
    INVALID_BANK_CODE = "invalid_bank_code"
    MISSING_BENEFICIARY = "missing_beneficiary"


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


class MT103Generator:
    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        self._rng = rng or random.Random(seed)
        self._clock = clock

    # ------------------------------------------------------------------ public

    def generate_valid(self) -> MT103Message:
        rng = self._rng
        currency = rng.choice(CURRENCIES)
        bearer = ChargeBearer(rng.choice([b.value for b in ChargeBearer]))

        charge_details = ChargeDetails(charge_bearer=bearer)
        senders_charges = receivers_charges = None
        if rng.random() < 0.3:
            charge_ccy, charge_amount = currency, self._amount(1, 99)
            charge_details = ChargeDetails(
                charge_bearer=bearer, charge_currency=charge_ccy, charge_amount=charge_amount
            )
            if bearer is ChargeBearer.OUR:
                receivers_charges = f"{charge_ccy}{charge_amount}"
            else:
                senders_charges = f"{charge_ccy}{charge_amount}"

        original_currency = original_amount = None
        if rng.random() < 0.2:
            original_currency = rng.choice([c for c in CURRENCIES if c != currency])
            original_amount = self._amount(100, 999_999)

        message = MT103Message(
            raw_message="",
            transaction_reference=self._reference(),
            bank_operation_code=rng.choice(BANK_OPERATION_CODES),
            value_date=self._clock().date() + _dt.timedelta(days=rng.randint(-30, 29)),
            currency=currency,
            amount=self._amount(100, 999_999),
            ordering_customer=self._customer(),
            beneficiary_customer=self._customer(),
            original_currency=original_currency,
            original_amount=original_amount,
            ordering_institution=self._maybe_party("52", 0.3),
            senders_correspondent=self._maybe_party("53", 0.2),
            receivers_correspondent=self._maybe_party("54", 0.1),
            intermediary_institution=self._maybe_party("56", 0.2),
            account_with_institution=self._maybe_party("57", 0.4),
            remittance_information=rng.choice(REMITTANCE_INFO),
            charge_details=charge_details,
            senders_charges=senders_charges,
            receivers_charges=receivers_charges,
            sender_to_receiver_info=rng.choice(SENDER_TO_RECEIVER_INFO) if rng.random() < 0.2 else None,
        )
        return message.model_copy(update={"raw_message": self.to_raw(message)})

    def generate_invalid(self, kind: InvalidKind) -> MT103Message:
        """A valid message with exactly one defect of the given *kind*."""
        message = self.generate_valid()
        broken: dict[str, object] = {
            InvalidKind.MISSING_TRANSACTION_REFERENCE: {"transaction_reference": ""},
            InvalidKind.INVALID_AMOUNT: {"amount": Decimal("-100.00")},
            InvalidKind.MISSING_CURRENCY: {"currency": ""},
            InvalidKind.INVALID_BANK_CODE: {"bank_operation_code": "XXXX"},
            InvalidKind.MISSING_BENEFICIARY: {"beneficiary_customer": NameCustomer()},
        }[kind]
        message = message.model_copy(update=broken)
        return message.model_copy(update={"raw_message": self.to_raw(message)})

    def generate_batch(self, count: int, *, valid_percentage: int = 80) -> list[MT103Message]:
        kinds = list(InvalidKind)
        batch = []
        for _ in range(count):
            if self._rng.randrange(100) < valid_percentage:
                batch.append(self.generate_valid())
            else:
                batch.append(self.generate_invalid(self._rng.choice(kinds)))
        return batch

    def to_raw(self, message: MT103Message) -> str:
        """Wire text for *message*; random sender/receiver headers."""
        rng = self._rng
        sender, receiver = rng.choice(BICS), rng.choice(BICS)
        session, sequence = rng.randint(1000, 9999), rng.randint(100000, 999999)

        lines = [
            f"{{1:F01{sender}AXXX{session}{sequence}}}",
            f"{{2:I103{receiver}XXXXN}}",
            "{4:",
            f":20:{message.transaction_reference}",
            f":23B:{message.bank_operation_code}",
            f":32A:{message.value_date:%y%m%d}{message.currency}{format_swift_decimal(message.amount)}",
        ]
        if message.original_currency and message.original_amount is not None:
            lines.append(f":33B:{message.original_currency}{format_swift_decimal(message.original_amount)}")
        lines.append(_customer_field("50A", "50K", message.ordering_customer))
        for prefix, value in (
            ("52", message.ordering_institution),
            ("53", message.senders_correspondent),
            ("54", message.receivers_correspondent),
            ("56", message.intermediary_institution),
            ("57", message.account_with_institution),
        ):
            if value:
                lines.append(_party_field(prefix, value))
        lines.append(_customer_field("59A", "59", message.beneficiary_customer))
        if message.remittance_information:
            lines.append(f":70:{message.remittance_information}")

        details = message.charge_details
        if details is not None:
            lines.append(f":71A:{details.charge_bearer.value}")
            if details.charge_amount is not None and details.charge_currency:
                tag = "71G" if details.charge_bearer is ChargeBearer.OUR else "71F"
                lines.append(f":{tag}:{details.charge_currency}{format_swift_decimal(details.charge_amount)}")
        if message.sender_to_receiver_info:
            lines.append(f":72:{message.sender_to_receiver_info}")
        lines.append("-}")
        return "\n".join(lines)

    # ----------------------------------------------------------------- helpers

    def _reference(self) -> str:
        # REF + yymmddHHMM + 3 digits = 16 characters
        return f"REF{self._clock():%y%m%d%H%M}{self._rng.randint(100, 999)}"

    def _amount(self, low: int, high: int) -> Decimal:
        return Decimal(f"{self._rng.randint(low, high)}.{self._rng.randint(0, 99):02d}")

    def _account(self) -> str:
        rng = self._rng
        variant = rng.randrange(3)
        if variant == 0:
            return f"ACC{rng.randint(10_000_000, 99_999_999)}"
        if variant == 1:
            return f"IBAN{rng.randint(1_000_000_000, 2_147_483_646)}"
        return f"{rng.randint(100_000, 999_999)}-{rng.randint(1000, 9999)}"

    def _customer(self) -> Customer:
        rng = self._rng
        if rng.random() < 0.5:
            return BicCustomer(account=self._account(), bic=rng.choice(BICS))
        return NameCustomer(
            account=self._account(),
            name=rng.choice(CUSTOMER_NAMES),
            address=rng.choice(ADDRESSES),
        )

    def _maybe_party(self, prefix: str, probability: float) -> Optional[str]:
        rng = self._rng
        if rng.random() >= probability:
            return None
        option = rng.choice(PARTY_OPTIONS[prefix])
        if option == "A":
            return rng.choice(BICS)
        if option == "B":
            return rng.choice(LOCATIONS)
        if option == "C":
            return f"CH{rng.randint(10, 99)}{rng.randint(10**16, 10**17 - 1)}"
        return rng.choice(INSTITUTION_NAMES)


def _customer_field(bic_tag: str, name_tag: str, customer: Customer) -> str:
    account = f"/{customer.account}\n" if customer.account else ""
    if isinstance(customer, BicCustomer):
        return f":{bic_tag}:{account}{customer.bic}"
    body = "\n".join(part for part in (customer.name, customer.address) if part)
    return f":{name_tag}:{account}{body}"


def _party_field(prefix: str, value: str) -> str:
    """Picks the wire option whose parse yields *value* back."""
    options = PARTY_OPTIONS[prefix]
    if options == "A" or BIC_FULL_RE.match(value):
        option = "A"
    elif "C" in options and _IBAN_RE.fullmatch(value):
        option = "C"
    elif "D" in options and ("\n" in value or "B" not in options):
        option = "D"
    else:
        option = "B"
    body = f"/{value}" if option == "C" else value
    return f":{prefix}{option}:{body}"
