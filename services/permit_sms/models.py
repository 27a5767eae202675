"""Data models for SMS commands, queued jobs and scraped permits."""
from dataclasses import dataclass, field, asdict, fields, replace
from datetime import datetime, timezone
from typing import Optional, Union


# ============================================================
# COMMANDS
# ============================================================

@dataclass(frozen=True)
class Help:
    type: str = field(default="HELP", init=False)


@dataclass(frozen=True)
class Status:
    query: str
    type: str = field(default="STATUS", init=False)


@dataclass(frozen=True)
class ListPermits:
    filter: str = "OPEN"
    type: str = field(default="LIST", init=False)


@dataclass(frozen=True)
class Fees:
    type: str = field(default="FEES", init=False)


@dataclass(frozen=True)
class Inspect:
    permit_number: str
    time_window: str
    notes: str = ""
    type: str = field(default="INSPECT", init=False)


@dataclass(frozen=True)
class Unknown:
    original_text: str
    type: str = field(default="UNKNOWN", init=False)


Command = Union[Help, Status, ListPermits, Fees, Inspect, Unknown]

COMMAND_TYPES = {
    "HELP": Help,
    "STATUS": Status,
    "LIST": ListPermits,
    "FEES": Fees,
    "INSPECT": Inspect,
    "UNKNOWN": Unknown,
}

# Commands that never touch the portal
STATIC_COMMAND_TYPES = {"HELP", "UNKNOWN"}


def command_to_dict(command: Command) -> dict:
    return asdict(command)


def command_from_dict(data: dict) -> Command:
    """Rebuild a Command from its queue payload; unrecognised tags become Unknown."""
    data = dict(data)
    command_type = data.pop("type", None)
    cls = COMMAND_TYPES.get(command_type)
    if cls is None:
        return Unknown(original_text=str(data))
    return cls(**data)


# ============================================================
# JOBS
# ============================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """
    One inbound command waiting for (or undergoing) portal automation.

    `attempt` counts executions started so far; a freshly enqueued job is at 1.
    """
    job_id: str
    phone_number: str
    command: Command
    original_message: str
    enqueued_at: datetime = field(default_factory=_utcnow)
    attempt: int = 1
    not_before: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def command_type(self) -> str:
        return self.command.type

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "job_id": self.job_id,
            "phone_number": self.phone_number,
            "command": command_to_dict(self.command),
            "original_message": self.original_message,
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempt": self.attempt,
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        """Create from dictionary (e.g., loaded from JSON)."""
        not_before = data.get("not_before")
        return cls(
            job_id=data["job_id"],
            phone_number=data["phone_number"],
            command=command_from_dict(data["command"]),
            original_message=data.get("original_message", ""),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            attempt=int(data.get("attempt", 1)),
            not_before=datetime.fromisoformat(not_before) if not_before else None,
            last_error=data.get("last_error"),
        )


# ============================================================
# RATE LIMITING
# ============================================================

@dataclass
class RateLimitStatus:
    count: int
    limit: int
    remaining: int
    reset_at: Optional[datetime] = None


# ============================================================
# PERMITS
# ============================================================

@dataclass
class PermitData:
    """Partial permit record, filled progressively by search and detail scraping."""
    permit_number: Optional[str] = None
    address: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    last_action: Optional[str] = None
    next_action: Optional[str] = None
    submitted_date: Optional[str] = None
    url: Optional[str] = None

    def merge(self, other: Optional["PermitData"]) -> "PermitData":
        """Return a copy where every field `other` has a value for is overwritten."""
        if other is None:
            return replace(self)
        updates = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name)}
        return replace(self, **updates)

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}
