import pytest

from services.permit_sms.intents import parse, validate_command
from services.permit_sms.models import Fees, Help, Inspect, ListPermits, Status, Unknown


@pytest.mark.parametrize("text", ["HELP", "help", "H", "  h  ", "Help"])
def test_help_and_alias(text):
    assert parse(text) == Help()


def test_status_keeps_query_casing():
    assert parse("STATUS 123 Main St") == Status(query="123 Main St")


def test_status_permit_number():
    assert parse("status P2024-001") == Status(query="P2024-001")


def test_status_without_query_is_unknown():
    assert parse("STATUS") == Unknown(original_text="STATUS")
    assert parse("STATUS   ") == Unknown(original_text="STATUS   ")


@pytest.mark.parametrize("text", ["LIST", "LIST OPEN", "list open", "List   Open"])
def test_list_variants(text):
    assert parse(text) == ListPermits(filter="OPEN")


def test_list_with_other_filter_is_unknown():
    assert parse("LIST CLOSED") == Unknown(original_text="LIST CLOSED")


@pytest.mark.parametrize("text", ["FEES", "fee", "Fees"])
def test_fees_and_alias(text):
    assert parse(text) == Fees()


def test_inspect_with_notes():
    command = parse("INSPECT P2024-001 FRI AM notes: Ready for final")
    assert command == Inspect(permit_number="P2024-001", time_window="FRI AM", notes="Ready for final")


def test_inspect_without_notes():
    command = parse("INSPECT P2024-001 MON PM")
    assert command == Inspect(permit_number="P2024-001", time_window="MON PM", notes="")


def test_inspect_notes_separator_is_case_insensitive():
    command = parse("inspect P2024-001 tomorrow NOTES: gate code 1234")
    assert command.notes == "gate code 1234"
    assert command.time_window == "tomorrow"


def test_inspect_single_token_is_unknown():
    assert parse("INSPECT P2024-001") == Unknown(original_text="INSPECT P2024-001")


def test_inspect_notes_without_window_is_unknown():
    text = "INSPECT P2024-001 notes: ready"
    assert parse(text) == Unknown(original_text=text)


@pytest.mark.parametrize("text", ["", "   ", "hello there", "STATUSES", "LISTING", "FEESX"])
def test_unrecognised_text_is_unknown(text):
    command = parse(text)
    assert isinstance(command, Unknown)
    assert command.original_text == text


def test_parse_never_raises_on_non_string():
    assert parse(None) == Unknown(original_text="")


@pytest.mark.parametrize("text", [
    "HELP",
    "STATUS 123 Main St",
    "LIST",
    "FEES",
    "INSPECT P2024-001 FRI AM notes: Ready for final",
    "garbage",
])
def test_parse_is_deterministic(text):
    assert parse(text) == parse(text)


def test_validate_command():
    assert validate_command(Status(query="x"))
    assert not validate_command(Status(query="  "))
    assert not validate_command(Inspect(permit_number="P1", time_window=""))
    assert validate_command(Inspect(permit_number="P1", time_window="AM"))
    assert validate_command(Help())
