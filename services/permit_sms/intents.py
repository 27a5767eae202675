"""
SMS command grammar.

    HELP | H
    STATUS <address|permit#>
    LIST [OPEN]
    FEES | FEE
    INSPECT <permit#> <time window...> notes: <text>

Anything else is Unknown. Keywords are case-insensitive; the query, permit
number, window and notes keep the sender's casing.
"""
import re

from .models import Command, Fees, Help, Inspect, ListPermits, Status, Unknown

NOTES_SEPARATOR = re.compile(r"notes:", re.IGNORECASE)


def _keyword_rest(text: str, keyword: str):
    """Return the text after `keyword ` if `text` starts with it, else None."""
    match = re.match(rf"{keyword}\s+(.*)$", text, re.IGNORECASE | re.DOTALL)
    if match:
        return match.group(1).strip()
    return None


def _parse_status(text: str):
    query = _keyword_rest(text, "STATUS")
    if query:
        return Status(query=query)
    return None


def _parse_inspect(text: str):
    rest = _keyword_rest(text, "INSPECT")
    if rest is None:
        return None

    notes = ""
    before_notes = rest
    match = NOTES_SEPARATOR.search(rest)
    if match:
        notes = rest[match.end():].strip()
        before_notes = rest[:match.start()].strip()

    parts = before_notes.split()
    if len(parts) < 2:
        return None

    return Inspect(permit_number=parts[0], time_window=" ".join(parts[1:]), notes=notes)


def validate_command(command: Command) -> bool:
    """Required fields must be non-empty; Inspect notes may be empty."""
    if isinstance(command, Status):
        return bool(command.query.strip())
    if isinstance(command, ListPermits):
        return command.filter == "OPEN"
    if isinstance(command, Inspect):
        return bool(command.permit_number.strip()) and bool(command.time_window.strip())
    return isinstance(command, (Help, Fees, Unknown))


def parse(text: str) -> Command:
    """
    Parse incoming SMS text into a Command.

    Total and deterministic: unparseable input is Unknown(original_text),
    never an exception.
    """
    original = text if isinstance(text, str) else ""
    stripped = original.strip()
    normalized = " ".join(stripped.upper().split())

    if normalized in ("HELP", "H"):
        command = Help()
    elif (status := _parse_status(stripped)) is not None:
        command = status
    elif normalized in ("LIST", "LIST OPEN"):
        command = ListPermits()
    elif normalized in ("FEES", "FEE"):
        command = Fees()
    elif (inspect := _parse_inspect(stripped)) is not None:
        command = inspect
    else:
        return Unknown(original_text=original)

    if not validate_command(command):
        return Unknown(original_text=original)
    return command
