"""File-based durable job queue for SMS commands."""
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from .models import Job
from .utils import get_logger

logger = get_logger("job_queue")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileJobQueue:
    """
    One JSON file per job, moved between directories as it changes state.

    Structure:
        queue_dir/
            pending/      <- Jobs waiting to be claimed (possibly with a not_before)
            active/       <- Jobs claimed by a worker
            dead/         <- Jobs that exhausted their retries

    Claiming is a rename from pending/ to active/, which is atomic on a single
    filesystem: when two workers race for the same file only one rename wins.
    """

    def __init__(self, queue_dir: Path | str = "data/job_queue", clock: Callable[[], datetime] = _utcnow):
        self.queue_dir = Path(queue_dir)
        self.pending_dir = self.queue_dir / "pending"
        self.active_dir = self.queue_dir / "active"
        self.dead_dir = self.queue_dir / "dead"
        self.clock = clock

        # Ensure directories exist
        for d in (self.pending_dir, self.active_dir, self.dead_dir):
            d.mkdir(parents=True, exist_ok=True)

    def _filename(self, job: Job) -> str:
        stamp = job.enqueued_at.strftime("%Y%m%d_%H%M%S_%f")
        safe_id = job.job_id.replace("+", "").replace("/", "_")
        return f"{stamp}_{safe_id}.json"

    def _write(self, path: Path, data: dict) -> None:
        # Readers only ever see complete files
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, path)

    def enqueue(self, job: Job) -> Path:
        """
        Add a job to the pending directory.

        Returns the path to the created file.
        """
        path = self.pending_dir / self._filename(job)
        self._write(path, job.to_dict())
        logger.info(f"Enqueued job {job.job_id} ({job.command_type}) for {job.phone_number}")
        return path

    def claim(self) -> Optional[Job]:
        """Claim the oldest due pending job, or None if nothing is due."""
        now = self.clock()
        for path in sorted(self.pending_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text())
            except FileNotFoundError:
                continue  # claimed by someone else
            except json.JSONDecodeError as e:
                logger.error(f"Corrupt job file {path.name}, moving to dead letters: {e}")
                os.replace(path, self.dead_dir / path.name)
                continue

            not_before = data.get("not_before")
            if not_before and datetime.fromisoformat(not_before) > now:
                continue

            target = self.active_dir / path.name
            try:
                os.replace(path, target)
            except FileNotFoundError:
                continue

            job = Job.from_dict(data)
            logger.debug(f"Claimed job {job.job_id} (attempt {job.attempt})")
            return job
        return None

    def _active_path(self, job: Job) -> Path:
        return self.active_dir / self._filename(job)

    def ack(self, job: Job) -> None:
        """Terminal success: drop the job."""
        path = self._active_path(job)
        if path.exists():
            path.unlink()
        logger.info(f"Acked job {job.job_id}")

    def retry(self, job: Job, delay_seconds: float, error: Optional[str] = None) -> Job:
        """Send a failed job back to pending with an incremented attempt and a backoff."""
        job.attempt += 1
        job.not_before = self.clock() + timedelta(seconds=delay_seconds)
        job.last_error = error
        source = self._active_path(job)
        self._write(self.pending_dir / source.name, job.to_dict())
        if source.exists():
            source.unlink()
        logger.info(f"Re-queued job {job.job_id} as attempt {job.attempt} in {delay_seconds:.0f}s")
        return job

    def dead_letter(self, job: Job, error: Optional[str] = None) -> Path:
        """Move a job that exhausted its retries to dead/."""
        source = self._active_path(job)
        data = job.to_dict()
        data["dead_at"] = self.clock().isoformat()
        data["error"] = error
        dest = self.dead_dir / source.name
        self._write(dest, data)
        if source.exists():
            source.unlink()
        logger.warning(f"Dead-lettered job {job.job_id} after {job.attempt} attempts: {error}")
        return dest

    def recover_active(self) -> int:
        """Return jobs orphaned in active/ (worker crash) to pending/. Call before starting workers."""
        recovered = 0
        for path in sorted(self.active_dir.glob("*.json")):
            os.replace(path, self.pending_dir / path.name)
            recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} orphaned active jobs")
        return recovered

    def counts(self) -> dict:
        return {
            "pending": len(list(self.pending_dir.glob("*.json"))),
            "active": len(list(self.active_dir.glob("*.json"))),
            "dead": len(list(self.dead_dir.glob("*.json"))),
        }

    def list_dead(self, limit: int = 20) -> list[dict]:
        """Dead-lettered job payloads, oldest first."""
        files = sorted(self.dead_dir.glob("*.json"))[:limit]
        return [json.loads(f.read_text()) for f in files]

    def clear_dead(self) -> int:
        removed = 0
        for path in self.dead_dir.glob("*.json"):
            path.unlink()
            removed += 1
        return removed
