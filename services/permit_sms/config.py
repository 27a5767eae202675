"""Environment configuration for the permit SMS runner."""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # Portal
    portal_base_url: str = "https://eclipsepermits.phila.gov"
    portal_login_url: str = ""
    portal_listing_url: str = ""
    portal_email: str = ""
    portal_password: str = ""

    # SMS provider
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    allowed_phone_numbers: list[str] = field(default_factory=list)

    # Rate limiting
    rate_limit_actions_per_hour: int = 6
    rate_limit_db: str = "data/rate_limit.sqlite3"

    # Queue / worker
    queue_dir: str = "data/job_queue"
    screenshot_dir: str = "fails"
    worker_concurrency: int = 2
    job_max_attempts: int = 2
    job_backoff_seconds: float = 5.0
    job_timeout_seconds: float = 120.0
    poll_interval: float = 1.0
    shutdown_deadline: float = 60.0

    # Browser
    navigation_timeout_ms: int = 30000
    probe_timeout_ms: int = 2000
    login_max_attempts: int = 2
    login_retry_delay: float = 3.0
    settle_delay: float = 2.0
    headless: bool = True

    log_level: str = "INFO"

    def __post_init__(self):
        base = self.portal_base_url.rstrip("/")
        if not self.portal_login_url:
            self.portal_login_url = f"{base}/eclipse/login"
        if not self.portal_listing_url:
            self.portal_listing_url = f"{base}/eclipse/mypermits"


def load_settings() -> Settings:
    """Build Settings from the process environment (after .env is loaded)."""
    allowed = os.getenv("ALLOWED_PHONE_NUMBERS", "")
    return Settings(
        portal_base_url=os.getenv("PORTAL_BASE_URL", Settings.portal_base_url),
        portal_login_url=os.getenv("PORTAL_LOGIN_URL", ""),
        portal_listing_url=os.getenv("PORTAL_LISTING_URL", ""),
        portal_email=os.getenv("PORTAL_EMAIL", ""),
        portal_password=os.getenv("PORTAL_PASSWORD", ""),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
        twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER", ""),
        allowed_phone_numbers=[p.strip() for p in allowed.split(",") if p.strip()],
        rate_limit_actions_per_hour=_env_int("RATE_LIMIT_ACTIONS_PER_HOUR", 6),
        rate_limit_db=os.getenv("RATE_LIMIT_DB", Settings.rate_limit_db),
        queue_dir=os.getenv("QUEUE_DIR", Settings.queue_dir),
        screenshot_dir=os.getenv("SCREENSHOT_DIR", Settings.screenshot_dir),
        worker_concurrency=_env_int("WORKER_CONCURRENCY", 2),
        job_max_attempts=_env_int("JOB_MAX_ATTEMPTS", 2),
        job_backoff_seconds=_env_float("JOB_BACKOFF_SECONDS", 5.0),
        job_timeout_seconds=_env_float("JOB_TIMEOUT_SECONDS", 120.0),
        poll_interval=_env_float("POLL_INTERVAL", 1.0),
        shutdown_deadline=_env_float("SHUTDOWN_DEADLINE", 60.0),
        navigation_timeout_ms=_env_int("NAVIGATION_TIMEOUT_MS", 30000),
        probe_timeout_ms=_env_int("PROBE_TIMEOUT_MS", 2000),
        login_max_attempts=_env_int("LOGIN_MAX_ATTEMPTS", 2),
        login_retry_delay=_env_float("LOGIN_RETRY_DELAY", 3.0),
        settle_delay=_env_float("SETTLE_DELAY", 2.0),
        headless=_env_bool("HEADLESS", True),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def validate_settings(settings: Settings, require_sms: bool = True, require_portal: bool = True) -> None:
    """
    Raise ConfigError naming every missing required value.

    The worker needs portal credentials and SMS credentials; the inbound
    side only needs the queue and the counter store.
    """
    required: dict[str, Optional[str]] = {}
    if require_portal:
        required["PORTAL_EMAIL"] = settings.portal_email
        required["PORTAL_PASSWORD"] = settings.portal_password
    if require_sms:
        required["TWILIO_ACCOUNT_SID"] = settings.twilio_account_sid
        required["TWILIO_AUTH_TOKEN"] = settings.twilio_auth_token
        required["TWILIO_PHONE_NUMBER"] = settings.twilio_phone_number

    missing = [key for key, value in required.items() if not value]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    if settings.rate_limit_actions_per_hour < 1:
        raise ConfigError("RATE_LIMIT_ACTIONS_PER_HOUR must be at least 1")
    if settings.worker_concurrency < 1:
        raise ConfigError("WORKER_CONCURRENCY must be at least 1")
    if settings.job_max_attempts < 1:
        raise ConfigError("JOB_MAX_ATTEMPTS must be at least 1")
