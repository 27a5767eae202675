#!/usr/bin/env python3
"""
Command line entry point for the permit SMS runner.

Usage:
    python -m services.permit_sms.runner receive --from +12155550100 --text "STATUS P2024-001"
    python -m services.permit_sms.runner worker --concurrency 2
    python -m services.permit_sms.runner health
    python -m services.permit_sms.runner rate-limit +12155550100 [--reset]
    python -m services.permit_sms.runner dead-letter [--clear]
"""
import argparse
import asyncio
import json
import signal
import sys

from .config import Settings, load_settings, validate_settings
from .exceptions import BrowserLaunchError, ConfigError, PermitRunnerError
from .inbound import InboundHandler
from .job_queue import FileJobQueue
from .notifier import ConsoleSmsSender, Notifier, TwilioSmsSender
from .rate_limit import RateLimiter, SqliteCounterStore
from .rpa.session import BrowserProcess
from .utils import format_phone_number, logger, setup_logging
from .worker import JobWorker


def build_rate_limiter(settings: Settings) -> RateLimiter:
    store = SqliteCounterStore(settings.rate_limit_db)
    return RateLimiter(store, actions_per_hour=settings.rate_limit_actions_per_hour)


def build_notifier(settings: Settings) -> Notifier:
    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number:
        sender = TwilioSmsSender(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
        )
    else:
        logger.warning("Twilio credentials not configured, printing SMS to stdout")
        sender = ConsoleSmsSender()
    return Notifier(sender)


async def cmd_receive(args, settings: Settings) -> int:
    validate_settings(settings, require_sms=args.send, require_portal=False)
    handler = InboundHandler(FileJobQueue(settings.queue_dir), build_rate_limiter(settings), settings)
    result = handler.handle(args.sender, args.text)

    if args.send:
        await build_notifier(settings).send(args.sender, result.reply)
    print(result.reply)
    if result.job:
        print(f"Queued job {result.job.job_id}")
    return 0


async def cmd_worker(args, settings: Settings) -> int:
    validate_settings(settings, require_sms=not args.console_sms)
    notifier = Notifier(ConsoleSmsSender()) if args.console_sms else build_notifier(settings)
    worker = JobWorker(
        queue=FileJobQueue(settings.queue_dir),
        browser=BrowserProcess(settings),
        notifier=notifier,
        settings=settings,
        concurrency=args.concurrency,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.request_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    try:
        await worker.run()
    except BrowserLaunchError as e:
        print(f"Error: {e}")
        return 1
    return 0


async def cmd_health(args, settings: Settings) -> int:
    queue = FileJobQueue(settings.queue_dir)
    report = {"queue": queue.counts(), "browser_connected": None}

    if not args.skip_browser:
        browser = BrowserProcess(settings)
        try:
            await browser.start()
            report["browser_connected"] = browser.is_connected
        except BrowserLaunchError as e:
            report["browser_connected"] = False
            report["error"] = str(e)
        finally:
            await browser.close()

    report["status"] = "unhealthy" if report["browser_connected"] is False else "healthy"
    print(json.dumps(report, indent=2))
    return 0 if report["status"] == "healthy" else 1


async def cmd_rate_limit(args, settings: Settings) -> int:
    limiter = build_rate_limiter(settings)
    phone = format_phone_number(args.phone)

    if args.reset:
        limiter.reset(phone)
        print(f"Rate limit reset for {phone}")
        return 0

    status = limiter.status(phone)
    print(f"{phone}: {status.count}/{status.limit} used, {status.remaining} remaining")
    if status.reset_at:
        print(f"Window resets at {status.reset_at.isoformat()}")
    return 0


async def cmd_dead_letter(args, settings: Settings) -> int:
    queue = FileJobQueue(settings.queue_dir)

    if args.clear:
        print(f"Removed {queue.clear_dead()} dead-lettered jobs")
        return 0

    dead = queue.list_dead(limit=args.limit)
    if not dead:
        print("No dead-lettered jobs.")
        return 0

    print(f"\n{'='*60}")
    print(f"DEAD-LETTERED JOBS: {len(dead)}")
    print(f"{'='*60}\n")
    for i, job in enumerate(dead, 1):
        print(f"{i}. {job.get('job_id')}")
        print(f"   Message: {job.get('original_message')}")
        print(f"   Attempts: {job.get('attempt')}")
        print(f"   Error: {job.get('error')}")
        print()
    return 0


COMMANDS = {
    "receive": cmd_receive,
    "worker": cmd_worker,
    "health": cmd_health,
    "rate-limit": cmd_rate_limit,
    "dead-letter": cmd_dead_letter,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SMS-driven permit portal runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    receive = subparsers.add_parser("receive", help="Handle one inbound SMS (parse, rate limit, enqueue)")
    receive.add_argument("--from", dest="sender", required=True, help="Sender phone number")
    receive.add_argument("--text", required=True, help="Message body")
    receive.add_argument("--send", action="store_true", help="Deliver the reply by SMS instead of only printing it")

    worker = subparsers.add_parser("worker", help="Process queued jobs until SIGINT/SIGTERM")
    worker.add_argument("--concurrency", type=int, help="Concurrent browser jobs (default: WORKER_CONCURRENCY)")
    worker.add_argument("--console-sms", action="store_true", help="Print outbound SMS instead of sending")

    health = subparsers.add_parser("health", help="Report queue depth and browser availability")
    health.add_argument("--skip-browser", action="store_true", help="Do not launch a browser")

    rate_limit = subparsers.add_parser("rate-limit", help="Show or reset a sender's hourly quota")
    rate_limit.add_argument("phone", help="Sender phone number")
    rate_limit.add_argument("--reset", action="store_true", help="Clear the sender's current window")

    dead_letter = subparsers.add_parser("dead-letter", help="Inspect or clear dead-lettered jobs")
    dead_letter.add_argument("--limit", type=int, default=20, help="Max jobs to show (default: 20)")
    dead_letter.add_argument("--clear", action="store_true", help="Delete all dead-lettered jobs")

    return parser


async def run_cli(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Error: {e}")
        return 2
    setup_logging(settings.log_level)

    try:
        return await COMMANDS[args.command](args, settings)
    except ConfigError as e:
        print(f"Error: {e}")
        return 2
    except PermitRunnerError as e:
        print(f"Error: {e}")
        return 1


def main():
    sys.exit(asyncio.run(run_cli()))


if __name__ == "__main__":
    main()
