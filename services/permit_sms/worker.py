"""
Job worker: claims queued SMS commands and runs them against the portal.

A semaphore bounds how many jobs hold a browser page at once. Each job gets
its own PortalSession, dispatched under a hard timeout, and the session is
closed on every exit path. Failures are reported to the sender, then turned
into a queue retry (with backoff) or a dead letter.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import Settings
from .exceptions import JobFailed
from .job_queue import FileJobQueue
from .models import Fees, Help, Inspect, Job, ListPermits, Status, Unknown, STATIC_COMMAND_TYPES
from .notifier import (
    Notifier,
    fees_text,
    help_text,
    inspection_text,
    not_found_text,
    permit_not_found_text,
    unknown_command_text,
)
from .rpa.inspections import open_inspection_request
from .rpa.permits import list_open_permits, scrape_details, search_by_address, search_by_number
from .rpa.session import BrowserProcess, PortalSession, ensure_logged_in, navigate_to_listing
from .utils import get_logger, looks_like_permit_number, sanitize_filename, timestamp

logger = get_logger("worker")

# Rows fetched for LIST; the SMS shows the first few and counts the rest
LIST_FETCH_LIMIT = 10


@dataclass
class RetryPolicy:
    max_attempts: int = 2
    backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after `attempt` (1-based)."""
        delay = self.backoff_seconds * (self.backoff_multiplier ** max(0, attempt - 1))
        return min(delay, self.max_backoff_seconds)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.job_max_attempts, backoff_seconds=settings.job_backoff_seconds)


@dataclass
class WorkerStats:
    succeeded: int = 0
    retried: int = 0
    dead_lettered: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "started_at": self.started_at.isoformat(),
        }


async def take_error_screenshot(session: PortalSession, job: Job, screenshot_dir: str) -> Optional[Path]:
    """Best-effort full-page screenshot named after the failing job."""
    name = sanitize_filename(f"job_{job.job_id}_{job.command_type}")
    path = Path(screenshot_dir) / f"error_{name}_{timestamp()}.png"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await session.page.screenshot(path=str(path), full_page=True)
    except Exception as e:
        logger.error(f"Failed to take error screenshot for job {job.job_id}: {e}")
        return None
    logger.info(f"Error screenshot saved: {path}")
    return path


class JobWorker:
    def __init__(
        self,
        queue: FileJobQueue,
        browser: BrowserProcess,
        notifier: Notifier,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: Optional[int] = None,
    ):
        self.queue = queue
        self.browser = browser
        self.notifier = notifier
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.concurrency = concurrency or settings.worker_concurrency
        self.stats = WorkerStats()

        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._stopping = asyncio.Event()
        self._active: set[asyncio.Task] = set()
        self._closed = False

    # ============================================================
    # JOB EXECUTION
    # ============================================================

    async def process_job(self, job: Job):
        """
        Execute one job and send its result SMS.

        Raises JobFailed (wrapping the cause) after the screenshot and the
        failure SMS have been attempted.
        """
        logger.info(f"Processing job {job.job_id} ({job.command_type}) attempt {job.attempt}")

        if job.command_type in STATIC_COMMAND_TYPES:
            await self._send_static(job)
            return

        session = None
        try:
            session = await self.browser.new_session(job.job_id)
            await asyncio.wait_for(self._dispatch(session, job), timeout=self.settings.job_timeout_seconds)
        except Exception as e:
            logger.error(f"Job {job.job_id} failed: {type(e).__name__}: {e}")
            if session is not None:
                await take_error_screenshot(session, job, self.settings.screenshot_dir)
            await self.notifier.send_failure(job.phone_number, job.original_message)
            raise JobFailed(job, e) from e
        finally:
            if session is not None:
                await session.close()

        logger.info(f"Job {job.job_id} completed")

    async def _send_static(self, job: Job):
        command = job.command
        if isinstance(command, Help):
            await self.notifier.send(job.phone_number, help_text())
        elif isinstance(command, Unknown):
            await self.notifier.send(job.phone_number, unknown_command_text(command.original_text))

    async def _dispatch(self, session: PortalSession, job: Job):
        command = job.command
        phone = job.phone_number

        await ensure_logged_in(session)
        await navigate_to_listing(session)

        if isinstance(command, Status):
            await self._handle_status(session, phone, command)
        elif isinstance(command, ListPermits):
            permits = await list_open_permits(session, LIST_FETCH_LIMIT)
            await self.notifier.send_permit_list(phone, permits)
        elif isinstance(command, Fees):
            await self.notifier.send(phone, fees_text(session.url))
        elif isinstance(command, Inspect):
            await self._handle_inspect(session, phone, command)
        else:
            raise ValueError(f"Unsupported command type: {job.command_type}")

    async def _handle_status(self, session: PortalSession, phone: str, command: Status):
        if looks_like_permit_number(command.query):
            permit = await search_by_number(session, command.query)
        else:
            permit = await search_by_address(session, command.query)

        if permit is None:
            await self.notifier.send(phone, not_found_text(command.query))
            return

        details = await scrape_details(session)
        permit = permit.merge(details)
        permit.url = session.url
        await self.notifier.send_permit(phone, permit)

    async def _handle_inspect(self, session: PortalSession, phone: str, command: Inspect):
        url = await open_inspection_request(session, command.permit_number)
        if url is None:
            await self.notifier.send(phone, permit_not_found_text(command.permit_number))
            return
        await self.notifier.send(
            phone,
            inspection_text(command.permit_number, command.time_window, command.notes, url),
        )

    async def handle_job(self, job: Job):
        """Run a claimed job and settle it in the queue (ack, retry or dead letter)."""
        try:
            await self.process_job(job)
        except JobFailed as e:
            error = f"{type(e.cause).__name__}: {e.cause}"
            if self.retry_policy.should_retry(job.attempt):
                self.queue.retry(job, self.retry_policy.delay_for(job.attempt), error)
                self.stats.retried += 1
            else:
                self.queue.dead_letter(job, error)
                self.stats.dead_lettered += 1
            return

        self.queue.ack(job)
        self.stats.succeeded += 1

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def _run_job(self, job: Job):
        try:
            await self.handle_job(job)
        except Exception as e:
            logger.error(f"Critical failure for job {job.job_id}, left in active/: {type(e).__name__}: {e}")
        finally:
            self._semaphore.release()

    async def _acquire_slot(self) -> bool:
        """Wait for a free job slot. False when a stop is requested first."""
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        stopping = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({acquire, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()
            if not acquire.done():
                acquire.cancel()
        await asyncio.wait({acquire})

        if acquire.cancelled():
            return False
        if self._stopping.is_set():
            self._semaphore.release()
            return False
        return True

    async def _idle(self):
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.settings.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def run(self):
        """
        Start the browser and process jobs until stop() or request_stop().

        Browser launch failure is raised before any job is claimed.
        """
        try:
            await self.browser.start()
        except Exception as e:
            logger.error(f"Worker cannot start: {e}")
            raise

        self.queue.recover_active()
        logger.info(f"Worker started with concurrency {self.concurrency}")

        try:
            while not self._stopping.is_set():
                if not await self._acquire_slot():
                    break

                job = self.queue.claim()
                if job is None:
                    self._semaphore.release()
                    await self._idle()
                    continue

                task = asyncio.create_task(self._run_job(job))
                self._active.add(task)
                task.add_done_callback(self._active.discard)
        finally:
            await self.stop()

    def request_stop(self):
        """Stop claiming new jobs; safe to call from a signal handler."""
        if not self._stopping.is_set():
            logger.info("Stop requested, no new jobs will be claimed")
        self._stopping.set()

    async def stop(self, deadline: Optional[float] = None):
        """
        Drain then close: wait up to `deadline` seconds for in-flight jobs,
        cancel the rest, and only then close the browser.
        """
        self.request_stop()
        if self._closed:
            return
        self._closed = True

        deadline = self.settings.shutdown_deadline if deadline is None else deadline
        if self._active:
            logger.info(f"Waiting up to {deadline:.0f}s for {len(self._active)} in-flight jobs")
            _, pending = await asyncio.wait(set(self._active), timeout=deadline)
            if pending:
                logger.warning(f"Cancelling {len(pending)} jobs still running at shutdown")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await self.browser.close()
        logger.info("Worker stopped")

    def health(self) -> dict:
        connected = self.browser.is_connected
        if self._stopping.is_set():
            status = "stopping"
        elif connected:
            status = "healthy"
        else:
            status = "unhealthy"
        return {
            "status": status,
            "browser_connected": connected,
            "queue": self.queue.counts(),
            "in_flight": len(self._active),
            "stats": self.stats.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
