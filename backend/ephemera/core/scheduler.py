"""
Expiry scheduler.

One APScheduler date job per record id, run on a background thread pool so
a slow or failing delete never holds up the others.

Deadlines are absolute. Records recovered after a restart keep the expiry
they were created with, and anything already overdue fires immediately.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from ephemera.core.errors import SchedulerFault
from ephemera.models.record import as_utc

logger = logging.getLogger(__name__)

EXPIRY_WORKERS = int(os.getenv("EXPIRY_WORKERS", "4"))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExpiryScheduler:
    """
    Fires ``on_expire(record_id)`` once per scheduled record, at or after
    its deadline.

    ``on_expire`` must be idempotent; a cancel that arrives after the job
    has been dispatched cannot stop it, the deletion still runs.
    """

    def __init__(self, on_expire: Callable[[int], bool], max_workers: int = EXPIRY_WORKERS):
        self._on_expire = on_expire

        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                # Late is fine, skipped is not
                "misfire_grace_time": None,
            },
            timezone="UTC",
        )
        self._scheduler.start()

    # ---------- public API ----------

    def schedule(self, record_id: int, expires_at: datetime) -> Job:
        if not self._scheduler.running:
            raise RuntimeError("Expiry scheduler has been shut down")

        expires_at = as_utc(expires_at)
        job = self._scheduler.add_job(
            self._fire,
            DateTrigger(run_date=expires_at),
            args=[record_id],
            id=str(record_id),
            name=f"self-destruct {record_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )

        logger.debug("⏱️ Record %s scheduled to self-destruct at %s", record_id, expires_at.isoformat())
        return job

    def cancel(self, record_id: int) -> bool:
        try:
            self._scheduler.remove_job(str(record_id))
        except JobLookupError:
            # Never scheduled, already fired or already cancelled
            return False

        logger.debug("Self-destruct of record %s cancelled", record_id)
        return True

    def recover(self, pending: Iterable[Tuple[int, datetime]]) -> int:
        now = utc_now()
        armed = 0
        overdue = 0

        for record_id, expires_at in pending:
            self.schedule(record_id, expires_at)
            armed += 1
            if as_utc(expires_at) <= now:
                overdue += 1

        logger.info("🔁 Recovered %d pending self-destructs (%d overdue)", armed, overdue)
        return armed

    def next_deadline(self) -> Optional[datetime]:
        deadlines = [as_utc(job.next_run_time) for job in self._scheduler.get_jobs() if job.next_run_time]
        return min(deadlines) if deadlines else None

    def shutdown(self, wait: bool = True):
        if not self._scheduler.running:
            return

        dropped = len(self)
        self._scheduler.remove_all_jobs()
        self._scheduler.shutdown(wait=wait)
        logger.info("Expiry scheduler stopped, %d pending self-destructs dropped", dropped)

    def __len__(self):
        return len(self._scheduler.get_jobs())

    def __contains__(self, record_id):
        return self._scheduler.get_job(str(record_id)) is not None

    # ---------- job ----------

    def _fire(self, record_id: int):
        try:
            deleted = self._on_expire(record_id)
        except Exception as e:
            fault = SchedulerFault(record_id, e)
            logger.error("🔥 %s", fault, exc_info=True)
            return

        if deleted:
            logger.info("💥 Record %s self-destructed", record_id)
        else:
            logger.debug("Record %s was already gone when its timer fired", record_id)
