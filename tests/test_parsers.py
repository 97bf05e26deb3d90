# tests/test_parsers.py
import datetime as dt
from decimal import Decimal

import pytest

from conftest import REF1_FIELDS, SAMPLE_MT103, build_raw
from libs.errors import ParsingError
from libs.models import BicCustomer, ChargeBearer, NameCustomer
from libs.parser import BlockParser, FieldExtractor, MT103Parser, get_parser, parse_mt103
from libs.regexes import FIELD_PATTERNS


def _without(tag_prefix: str) -> tuple[str, ...]:
    return tuple(f for f in REF1_FIELDS if not f.startswith(f":{tag_prefix}"))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_ref1_scenario():
    msg = parse_mt103(build_raw(*REF1_FIELDS))

    assert msg.transaction_reference == "REF1"
    assert msg.bank_operation_code == "CRED"
    assert msg.currency == "EUR"
    assert msg.amount == Decimal("1000.00")
    assert msg.value_date == dt.date(2024, 12, 15)
    assert msg.ordering_customer == NameCustomer(name="NAME")
    assert msg.beneficiary_customer == NameCustomer(name="BEN")


def test_sample_message_full_parse():
    msg = parse_mt103(SAMPLE_MT103)

    assert msg.message_type == "MT103"
    assert msg.raw_message == SAMPLE_MT103
    assert msg.transaction_reference == "REFERENCE12345"
    assert msg.amount == Decimal("123456.78")
    assert msg.ordering_customer == NameCustomer(
        account="12345678901234567890",
        name="JOHN DOE",
        address="123 MAIN STREET\nNEW YORK NY 10001",
    )
    assert msg.beneficiary_customer.name == "JANE SMITH"
    assert msg.beneficiary_customer.address == "456 OAK AVENUE\nLONDON EC1A 1BB"
    assert msg.remittance_information == "PAYMENT FOR INVOICE 12345"
    assert msg.charge_details.charge_bearer is ChargeBearer.SHA
    assert msg.charge_details.charge_amount is None
    # audit map keeps blocks and raw tags
    assert msg.fields["block1"] == "{1:F01DEUTDEFF0123456789012345}"
    assert msg.fields["23B"] == "CRED"
    assert msg.fields["71A"] == "SHA"


def test_crlf_line_endings_are_accepted():
    msg = parse_mt103(SAMPLE_MT103.replace("\n", "\r\n"))

    assert msg.transaction_reference == "REFERENCE12345"
    assert msg.ordering_customer.address == "123 MAIN STREET\nNEW YORK NY 10001"


def test_bic_forms_win_over_name_forms():
    raw = build_raw(
        ":20:REF2",
        ":23B:CRED",
        ":32A:240101USD5,",
        ":50A:/DE89370400440532013000\nDEUTDEFF",
        ":59A:CHASUS33XXX",
    )

    msg = parse_mt103(raw)

    assert msg.ordering_customer == BicCustomer(account="DE89370400440532013000", bic="DEUTDEFF")
    assert msg.beneficiary_customer == BicCustomer(bic="CHASUS33XXX")
    assert msg.amount == Decimal("5")


def test_optional_fields():
    raw = build_raw(
        *REF1_FIELDS,
        ":33B:USD1100,50",
        ":52A:BNPAFRPP",
        ":53B:/ACC123\nPARIS",
        ":56C:/CH9300762011623852957",
        ":57D:BANK OF NOWHERE\nSOMEWHERE",
        ":71A:OUR",
        ":71F:EUR2,50",
        ":71G:EUR10,",
        ":72:/ACC/URGENT",
    )

    msg = parse_mt103(raw)

    assert msg.original_currency == "USD"
    assert msg.original_amount == Decimal("1100.50")
    assert msg.ordering_institution == "BNPAFRPP"
    assert msg.senders_correspondent == "PARIS"
    assert msg.intermediary_institution == "CH9300762011623852957"
    assert msg.account_with_institution == "BANK OF NOWHERE\nSOMEWHERE"
    assert msg.senders_charges == "EUR2.50"
    assert msg.receivers_charges == "EUR10"
    # OUR: the receiver's charges are the claimed ones
    assert msg.charge_details.charge_bearer is ChargeBearer.OUR
    assert msg.charge_details.charge_amount == Decimal("10")
    assert msg.charge_details.charge_currency == "EUR"
    assert msg.sender_to_receiver_info == "/ACC/URGENT"


def test_unknown_charge_code_is_left_to_the_validator():
    msg = parse_mt103(build_raw(*REF1_FIELDS, ":71A:XYZ"))

    assert msg.charge_details is None
    assert msg.fields["71A"] == "XYZ"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("tag", ["20", "23B", "32A", "50", "59"])
def test_missing_mandatory_field_names_its_tag(tag: str):
    with pytest.raises(ParsingError) as exc_info:
        parse_mt103(build_raw(*_without(tag)))

    assert tag in str(exc_info.value)
    assert exc_info.value.field == tag


def test_missing_23b_message():
    with pytest.raises(ParsingError, match="23B"):
        parse_mt103(build_raw(*_without("23B")))


@pytest.mark.parametrize(
    "raw, block",
    [
        ("{2:I103CHASUS33XXXXN}{4:\n:20:X\n-}", "block1"),
        ("{1:F01DEUTDEFFAXXX0000000000}{4:\n:20:X\n-}", "block2"),
        ("{1:F01DEUTDEFFAXXX0000000000}{2:I103CHASUS33XXXXN}", "block4"),
    ],
)
def test_missing_block(raw: str, block: str):
    with pytest.raises(ParsingError) as exc_info:
        BlockParser().parse(raw)

    assert exc_info.value.field == block
    assert "Missing required Block" in str(exc_info.value)


def test_wrong_message_type_in_block2():
    raw = build_raw(*REF1_FIELDS, block2="{2:I202CHASUS33XXXXN}")

    with pytest.raises(ParsingError, match="MT103"):
        parse_mt103(raw)


@pytest.mark.parametrize("raw", ["", "   \n  "])
def test_empty_input(raw: str):
    with pytest.raises(ParsingError, match="empty"):
        parse_mt103(raw)


@pytest.mark.parametrize(
    "amount, expected",
    [
        ("123456,78", Decimal("123456.78")),
        ("999999999,99", Decimal("999999999.99")),
        ("1000,", Decimal("1000")),
        ("0,5", Decimal("0.5")),
    ],
)
def test_amounts_keep_full_precision(amount: str, expected: Decimal):
    fields = (":20:REF1", ":23B:CRED", f":32A:241215EUR{amount}", ":50K:NAME", ":59:BEN")

    assert parse_mt103(build_raw(*fields)).amount == expected


@pytest.mark.parametrize("amount", ["12.50", "ABC", "1,2,3", "-5,00"])
def test_bad_amount_is_a_32a_error(amount: str):
    fields = (":20:REF1", ":23B:CRED", f":32A:241215EUR{amount}", ":50K:NAME", ":59:BEN")

    with pytest.raises(ParsingError) as exc_info:
        parse_mt103(build_raw(*fields))

    assert exc_info.value.field == "32A"


@pytest.mark.parametrize(
    "date_str, expected",
    [
        ("241215", dt.date(2024, 12, 15)),
        ("240229", dt.date(2024, 2, 29)),
        ("000101", dt.date(2000, 1, 1)),
        ("491231", dt.date(2049, 12, 31)),
        ("500101", dt.date(1950, 1, 1)),
        ("991231", dt.date(1999, 12, 31)),
    ],
)
def test_value_dates(date_str: str, expected: dt.date):
    fields = (":20:REF1", ":23B:CRED", f":32A:{date_str}EUR1,", ":50K:NAME", ":59:BEN")

    assert parse_mt103(build_raw(*fields)).value_date == expected


@pytest.mark.parametrize("date_str", ["240230", "241301", "230229", "24AB01"])
def test_invalid_value_date(date_str: str):
    fields = (":20:REF1", ":23B:CRED", f":32A:{date_str}EUR1,", ":50K:NAME", ":59:BEN")

    with pytest.raises(ParsingError, match="Invalid value date in field 32A"):
        parse_mt103(build_raw(*fields))


def test_malformed_optional_field_names_its_tag():
    with pytest.raises(ParsingError) as exc_info:
        parse_mt103(build_raw(*REF1_FIELDS, ":33B:USDABC"))

    assert exc_info.value.field == "33B"


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

def test_field_extractor_collects_known_tags_only():
    text = ":20:REF1\n:23B:CRED\n:99Z:IGNORED"

    assert FieldExtractor().collect(text) == {"20": "REF1", "23B": "CRED"}


def test_parser_uses_the_table_it_was_given():
    parser = MT103Parser(field_patterns=FIELD_PATTERNS)

    assert parser.parse(build_raw(*REF1_FIELDS)).transaction_reference == "REF1"


@pytest.mark.parametrize("message_type", ["MT103", "103", "mt103"])
def test_get_parser_registry(message_type: str):
    assert get_parser(message_type).message_type == "MT103"


def test_get_parser_unsupported_type():
    with pytest.raises(ParsingError, match="Unsupported"):
        get_parser("MT202")
