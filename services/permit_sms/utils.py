import logging
import re
from datetime import datetime, timezone
from typing import Optional

# Setup logger
logger = logging.getLogger("permit_sms")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger (safe to call twice)."""
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def get_logger(name: str) -> logging.Logger:
    """Child of the package logger, e.g. get_logger("worker") -> permit_sms.worker."""
    return logger.getChild(name)


def format_phone_number(phone: str) -> str:
    """
    Normalize a phone number to an E.164-like form.

    10 digits are treated as a US number, 11 digits starting with 1 get a
    leading '+', anything else keeps its digits behind a '+'.
    """
    digits = re.sub(r"\D", "", phone or "")

    if len(digits) == 10:
        return f"+1{digits}"

    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"

    return f"+{digits}"


def timestamp(now: Optional[datetime] = None) -> str:
    """ISO timestamp safe for file names (':' and '.' replaced by '-')."""
    now = now or datetime.now(timezone.utc)
    return re.sub(r"[:.]", "-", now.isoformat())


def sanitize_filename(text: str) -> str:
    """Keep [A-Za-z0-9_-], collapse underscores, cap at 50 chars."""
    cleaned = re.sub(r"[^a-zA-Z0-9\-_]", "_", text)
    cleaned = re.sub(r"_+", "_", cleaned)
    return cleaned[:50]


# Common permit number patterns, most specific first
PERMIT_NUMBER_PATTERNS = [
    re.compile(r"P\d{4}-\d{3,}", re.IGNORECASE),  # P2024-001
    re.compile(r"\d{4}-\d{3,}"),  # 2024-001
    re.compile(r"P\d{7}", re.IGNORECASE),  # P2024001
    re.compile(r"\d{7}"),  # 2024001
]


def extract_permit_number(text: str) -> Optional[str]:
    """Pull the first permit-number-looking token out of free text."""
    if not text:
        return None

    for pattern in PERMIT_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).upper()

    return None


def looks_like_permit_number(query: str) -> bool:
    """
    Single-token queries starting with digits (optionally prefixed by P) are
    permit numbers; anything with spaces is an address ("123 Main St").
    """
    query = query.strip()
    if not query or any(ch.isspace() for ch in query):
        return False
    return bool(re.match(r"^P?\d+", query, re.IGNORECASE))
