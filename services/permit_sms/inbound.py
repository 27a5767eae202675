"""
Inbound SMS handling: allowlist, parsing, rate limiting and enqueueing.

Returns the immediate reply for the transport to deliver (the webhook
response) together with the job that was queued, if any.
"""
import time
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .intents import parse
from .job_queue import FileJobQueue
from .models import Help, Job, Unknown
from .notifier import ack_text, help_text, rate_limited_text, unauthorized_text, unknown_command_text
from .rate_limit import RateLimiter
from .utils import format_phone_number, get_logger

logger = get_logger("inbound")


@dataclass
class InboundResult:
    reply: str
    job: Optional[Job] = None


class InboundHandler:
    def __init__(self, queue: FileJobQueue, rate_limiter: RateLimiter, settings: Settings):
        self.queue = queue
        self.rate_limiter = rate_limiter
        self.settings = settings
        self.allowed_numbers = {format_phone_number(p) for p in settings.allowed_phone_numbers}
        if not self.allowed_numbers:
            logger.warning("ALLOWED_PHONE_NUMBERS is empty - accepting commands from any number")

    def is_allowed(self, phone: str) -> bool:
        if not self.allowed_numbers:
            return True
        return format_phone_number(phone) in self.allowed_numbers

    @staticmethod
    def new_job_id(phone: str) -> str:
        return f"{phone}-{int(time.time() * 1000)}"

    def handle(self, phone: str, text: str) -> InboundResult:
        phone = format_phone_number(phone)
        text = (text or "").strip()
        logger.info(f"Received SMS from {phone}: {text!r}")

        if not text:
            return InboundResult(unknown_command_text(text))

        if not self.is_allowed(phone):
            logger.warning(f"Unauthorized phone number: {phone}")
            return InboundResult(unauthorized_text())

        command = parse(text)

        # Answered from static text, no portal work and no quota charge
        if isinstance(command, Help):
            return InboundResult(help_text())
        if isinstance(command, Unknown):
            return InboundResult(unknown_command_text(command.original_text))

        if not self.rate_limiter.check_allowed(phone):
            return InboundResult(rate_limited_text(self.rate_limiter.limit))

        job = Job(
            job_id=self.new_job_id(phone),
            phone_number=phone,
            command=command,
            original_message=text,
        )
        # Quota is only charged for a job that was actually queued
        self.queue.enqueue(job)
        self.rate_limiter.record_action(phone)
        return InboundResult(ack_text(command.type), job)
