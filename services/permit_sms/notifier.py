"""
SMS text formatting and delivery.

Formatting functions are pure; `Notifier` is the single place that hands
text to the outbound provider. Portal code never calls it directly.
"""
from typing import Awaitable, Callable, Optional

import httpx

from .models import PermitData
from .utils import format_phone_number, get_logger

logger = get_logger("notifier")

# Twilio accepts up to 1600 characters and splits into segments itself
MAX_SMS_LENGTH = 1600
LIST_DISPLAY_LIMIT = 5

SendSms = Callable[[str, str], Awaitable[None]]


# ============================================================
# FORMATTERS
# ============================================================

def status_emoji(status: str) -> str:
    status_lower = status.lower()

    if "approved" in status_lower or "complete" in status_lower:
        return "✅"
    if "pending" in status_lower or "review" in status_lower:
        return "⏳"
    if "rejected" in status_lower or "denied" in status_lower:
        return "❌"
    if "correction" in status_lower or "revision" in status_lower:
        return "🔄"
    if "inspection" in status_lower:
        return "🔍"

    return "📋"


def format_permit(permit: PermitData) -> str:
    lines = []

    if permit.permit_number:
        lines.append(f"🏗️ {permit.permit_number}")
    if permit.address:
        lines.append(f"📍 {permit.address}")
    if permit.type:
        lines.append(f"📋 {permit.type}")
    if permit.status:
        lines.append(f"{status_emoji(permit.status)} {permit.status}")
    if permit.last_action:
        lines.append(f"📅 Last: {permit.last_action}")
    if permit.next_action:
        lines.append(f"⏭️ Next: {permit.next_action}")
    if permit.url:
        lines.append(f"🔗 {permit.url}")

    return "\n".join(lines)


def no_open_permits_text() -> str:
    return "📋 No open permits found."


def format_permit_list(permits: list[PermitData], display_limit: int = LIST_DISPLAY_LIMIT) -> str:
    if not permits:
        return no_open_permits_text()

    lines = ["📋 Open Permits:"]
    for index, permit in enumerate(permits[:display_limit], 1):
        emoji = status_emoji(permit.status) if permit.status else "📋"
        lines.append(
            f"{index}. {emoji} {permit.permit_number or 'Unknown'} - {permit.address or 'No address'}"
        )

    if len(permits) > display_limit:
        lines.append(f"\n...and {len(permits) - display_limit} more")

    return "\n".join(lines)


def help_text() -> str:
    return (
        "🔧 Permit Runner Commands:\n"
        "\n"
        "HELP - Show this help\n"
        "STATUS <address|permit#> - Get permit status\n"
        "LIST OPEN - Show open permits\n"
        "FEES - Get fees page link\n"
        "INSPECT <permit#> <time> notes: <text> - Request inspection\n"
        "\n"
        "Examples:\n"
        "• STATUS 123 Main St\n"
        "• STATUS P2024-001\n"
        "• LIST OPEN\n"
        "• INSPECT P2024-001 FRI AM notes: Ready for final"
    )


def unknown_command_text(original_text: str) -> str:
    return f'❌ Unknown command: "{original_text}"\n\nSend HELP for available commands.'


def failure_text(original_command: Optional[str] = None) -> str:
    if original_command:
        return (
            f'❌ Sorry, there was an error processing "{original_command}". '
            "Please try again later or contact support."
        )
    return "❌ Sorry, there was an error processing your request. Please try again later."


def not_found_text(query: str) -> str:
    return f'❌ No permit found for "{query}"'


def permit_not_found_text(permit_number: str) -> str:
    return f"❌ Permit {permit_number} not found"


def fees_text(url: str) -> str:
    return f"💰 Fees & Payments:\n🔗 {url}"


def inspection_text(permit_number: str, time_window: str, notes: str, url: str) -> str:
    return (
        f"🔍 Inspection Request for {permit_number}\n"
        f"📅 Time: {time_window}\n"
        f"📝 Notes: {notes or 'None'}\n"
        f"🔗 {url}\n"
        "\n"
        "Please complete the inspection request on the page above."
    )


def rate_limited_text(limit: int) -> str:
    return (
        f"⏰ Rate limit exceeded. You can send up to {limit} commands per hour. "
        "Please try again later."
    )


def unauthorized_text() -> str:
    return "🚫 Unauthorized. This number is not allowed to use this service."


ACK_MESSAGES = {
    "STATUS": "🔍 Looking up permit status...",
    "LIST": "📋 Retrieving open permits...",
    "FEES": "💰 Getting fees information...",
    "INSPECT": "🔍 Processing inspection request...",
}


def ack_text(command_type: str) -> str:
    return ACK_MESSAGES.get(command_type, "⏳ Processing your request...")


# ============================================================
# DELIVERY
# ============================================================

class Notifier:
    """Truncates to the provider cap and delegates to a send_sms coroutine."""

    def __init__(self, send_sms: SendSms):
        self.send_sms = send_sms

    async def send(self, phone: str, body: str) -> bool:
        to = format_phone_number(phone)
        try:
            await self.send_sms(to, body[:MAX_SMS_LENGTH])
        except Exception as e:
            logger.error(f"Failed to send SMS to {to}: {e}")
            return False
        logger.info(f"SMS sent to {to}")
        return True

    async def send_permit(self, phone: str, permit: PermitData) -> bool:
        return await self.send(phone, format_permit(permit))

    async def send_permit_list(self, phone: str, permits: list[PermitData]) -> bool:
        return await self.send(phone, format_permit_list(permits))

    async def send_failure(self, phone: str, original_command: Optional[str] = None) -> bool:
        return await self.send(phone, failure_text(original_command))


class TwilioSmsSender:
    """Outbound SMS through the Twilio Messages REST endpoint."""

    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: float = 30.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    async def __call__(self, to: str, body: str) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.API_URL.format(sid=self.account_sid),
                auth=(self.account_sid, self.auth_token),
                data={"From": self.from_number, "To": to, "Body": body},
            )
            response.raise_for_status()
            data = response.json()
            logger.debug(f"Twilio accepted message {data.get('sid')} status={data.get('status')}")


class ConsoleSmsSender:
    """Prints outbound messages; used when no provider credentials are configured."""

    def __init__(self, stream=None):
        self.stream = stream
        self.sent: list[tuple[str, str]] = []

    async def __call__(self, to: str, body: str) -> None:
        self.sent.append((to, body))
        print(f"--- SMS to {to} ---\n{body}\n", file=self.stream)
