"""Publish scheduler: paces reader-facing releases into fixed daily slots.

All slot-window arithmetic happens in the configured reference timezone;
persisted times are UTC.
"""

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from config.exceptions import SchedulingError, WorkflowStateError
from config.settings import PublishSlotConfig, Settings
from models.database import Database
from models.enums import PublishStatus
from models.publish import PublishJob
from tools.time_utils import day_bounds_utc, ensure_aware, local_datetime, reference_date, utc_now

logger = logging.getLogger(__name__)


@dataclass
class PublishPassResult:
    published: int = 0
    failed: int = 0


class PublishScheduler:
    """Creates publish jobs and flips chapter visibility when they come due."""

    def __init__(self, db: Database, settings: Settings, rng: Optional[random.Random] = None):
        self.db = db
        self.settings = settings
        self.rng = rng or random.Random()

    @property
    def tz(self):
        return self.settings.tz

    def _slot(self, name: str) -> PublishSlotConfig:
        try:
            return self.settings.get_slot(name)
        except KeyError:
            raise SchedulingError(f"Unknown publish slot: {name}") from None

    def slot_window(self, slot: PublishSlotConfig, day: date) -> tuple[datetime, datetime]:
        """[start, end) of ``slot`` on reference-timezone ``day``."""
        return local_datetime(day, slot.start_hour, self.tz), local_datetime(day, slot.end_hour, self.tz)

    def slot_for_time(self, when: datetime) -> Optional[str]:
        """Name of the slot whose window contains ``when``, if any."""
        local = ensure_aware(when).astimezone(self.tz)
        for slot in self.settings.publish_slots:
            start, end = self.slot_window(slot, local.date())
            if start <= local < end:
                return slot.name
        return None

    def next_slot_time(self, slot_name: str, now: Optional[datetime] = None) -> datetime:
        """A random time in the next occurrence of the slot window that is not in the past.

        Today's window is used while it is still open, otherwise tomorrow's.
        """
        now = ensure_aware(now or utc_now())
        slot = self._slot(slot_name)
        today = reference_date(now, self.tz)
        start, end = self.slot_window(slot, today)
        if now >= end:
            start, end = self.slot_window(slot, today + timedelta(days=1))
        base = max(start, now.astimezone(self.tz))
        span = (end - base).total_seconds()
        return (base + timedelta(seconds=self.rng.random() * span)).astimezone(timezone.utc)

    def next_available_slot(self, now: Optional[datetime] = None) -> str:
        """The slot whose next window opens (or is open) soonest."""
        now = ensure_aware(now or utc_now())
        return min(self.settings.publish_slots, key=lambda s: self._next_window_end(s, now)).name

    def _next_window_end(self, slot: PublishSlotConfig, now: datetime) -> datetime:
        today = reference_date(now, self.tz)
        _, end = self.slot_window(slot, today)
        if now >= end:
            _, end = self.slot_window(slot, today + timedelta(days=1))
        return end

    # ---- Job lifecycle ----

    def prepare_publish(
        self,
        production_id: int,
        chapter_id: int,
        chapter_number: int,
        slot: str,
        scheduled_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PublishJob:
        """Build an unsaved ``scheduled`` publish job inside ``slot``'s window.

        Raises:
            SchedulingError: unknown slot, or ``scheduled_time`` outside the slot window.
        """
        self._slot(slot)
        if scheduled_time is None:
            scheduled_time = self.next_slot_time(slot, now)
        elif self.slot_for_time(scheduled_time) != slot:
            raise SchedulingError(
                f"Scheduled time {scheduled_time.isoformat()} is outside slot '{slot}'",
                {"production_id": production_id, "chapter_number": chapter_number},
            )
        return PublishJob(
            production_id=production_id,
            chapter_id=chapter_id,
            chapter_number=chapter_number,
            scheduled_time=ensure_aware(scheduled_time),
            slot=slot,
        )

    def schedule_publish(
        self,
        production_id: int,
        chapter_id: int,
        chapter_number: int,
        slot: str,
        scheduled_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PublishJob:
        """Create a ``scheduled`` publish job inside ``slot``'s window."""
        job = self.prepare_publish(production_id, chapter_id, chapter_number, slot, scheduled_time, now)
        job.id = self.db.create_publish_job(job)
        logger.info("Scheduled publish of production %d ch.%d at %s (%s)",
                    production_id, chapter_number, job.scheduled_time.isoformat(), slot)
        return job

    def cancel_publish(self, job_id: int) -> None:
        """Delete a publish job; only valid while it is still ``scheduled``."""
        job = self.db.get_publish_job(job_id)
        if job is None:
            raise SchedulingError(f"Publish job {job_id} not found")
        if job.status != PublishStatus.SCHEDULED or not self.db.delete_scheduled_publish_job(job_id):
            raise WorkflowStateError(
                f"Publish job {job_id} cannot be cancelled in status '{job.status.value}'"
            )
        logger.info("Cancelled publish job %d", job_id)

    def reschedule_publish(self, job_id: int, new_time: datetime) -> PublishJob:
        """Move a ``scheduled`` job to ``new_time``; the slot is re-derived from the time."""
        job = self.db.get_publish_job(job_id)
        if job is None:
            raise SchedulingError(f"Publish job {job_id} not found")
        slot = self.slot_for_time(new_time)
        if slot is None:
            raise SchedulingError(f"{new_time.isoformat()} is not inside any publish slot")
        if job.status != PublishStatus.SCHEDULED or not self.db.reschedule_publish_job(job_id, new_time, slot):
            raise WorkflowStateError(
                f"Publish job {job_id} cannot be rescheduled in status '{job.status.value}'"
            )
        return self.db.get_publish_job(job_id)

    def _publish(self, job: PublishJob, now: datetime) -> Optional[bool]:
        """Claim and publish one due job. None when another worker claimed it first.

        Any failure after the claim moves the job to ``failed`` with its retry
        count bumped, so the retry pass can pick it up.
        """
        if not self.db.claim_publish_job(job.id, PublishStatus.SCHEDULED, PublishStatus.PUBLISHING):
            return None
        try:
            self.db.complete_publish_job(job.id, job.chapter_id, now)
        except Exception as e:
            logger.warning("Publishing job %d (production %d ch.%d) failed: %s",
                           job.id, job.production_id, job.chapter_number, e)
            self.db.fail_publish_job(job.id, str(e) or type(e).__name__)
            return False
        logger.info("Published production %d ch.%d", job.production_id, job.chapter_number)
        return True

    def recover_stale_publishes(self, now: Optional[datetime] = None) -> int:
        """Return jobs stuck in ``publishing`` past the stale window to ``scheduled``."""
        now = ensure_aware(now or utc_now())
        cutoff = now - timedelta(minutes=self.settings.stale_claim_minutes)
        recovered = 0
        for job in self.db.list_stale_publish_jobs(cutoff):
            if self.db.claim_publish_job(job.id, PublishStatus.PUBLISHING, PublishStatus.SCHEDULED, now=now):
                logger.warning("Recovered stale publish job %d (production %d ch.%d)",
                               job.id, job.production_id, job.chapter_number)
                recovered += 1
        return recovered

    def run_publish_pass(self, now: Optional[datetime] = None) -> PublishPassResult:
        """Publish every due ``scheduled`` job, oldest scheduled time first."""
        now = ensure_aware(now or utc_now())
        result = PublishPassResult()
        for job in self.db.list_due_publish_jobs(now, limit=self.settings.publish_batch_size):
            outcome = self._publish(job, now)
            if outcome is True:
                result.published += 1
            elif outcome is False:
                result.failed += 1
        return result

    def retry_failed_publishes(
        self,
        max_retries: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PublishPassResult:
        """Re-publish failed jobs whose retry count is still under the ceiling."""
        max_retries = self.settings.publish_max_retries if max_retries is None else max_retries
        now = ensure_aware(now or utc_now())
        result = PublishPassResult()
        for job in self.db.list_retryable_publish_jobs(max_retries, limit=self.settings.publish_batch_size):
            if not self.db.claim_publish_job(job.id, PublishStatus.FAILED, PublishStatus.SCHEDULED):
                continue
            outcome = self._publish(job, now)
            if outcome is True:
                result.published += 1
            elif outcome is False:
                result.failed += 1
        return result

    # ---- Queries ----

    def get_today_schedule(self, now: Optional[datetime] = None) -> dict[str, list[PublishJob]]:
        """Today's (reference timezone) publish jobs grouped by slot, in slot order."""
        now = ensure_aware(now or utc_now())
        start, end = day_bounds_utc(reference_date(now, self.tz), self.tz)
        schedule: dict[str, list[PublishJob]] = {s.name: [] for s in self.settings.publish_slots}
        for job in self.db.list_publish_jobs(start=start, end=end):
            schedule.setdefault(job.slot, []).append(job)
        return schedule

    def get_upcoming_publishes(self, hours: int = 24, now: Optional[datetime] = None) -> list[PublishJob]:
        """Still-scheduled releases due within the next ``hours``, soonest first."""
        now = ensure_aware(now or utc_now())
        return self.db.list_publish_jobs(
            status=PublishStatus.SCHEDULED, start=now, end=now + timedelta(hours=hours),
        )

    def get_publishing_stats(self, now: Optional[datetime] = None) -> dict:
        now = ensure_aware(now or utc_now())
        counts = self.db.count_publish_jobs_by_status()
        start, end = day_bounds_utc(reference_date(now, self.tz), self.tz)
        due_soon = self.db.list_publish_jobs(
            status=PublishStatus.SCHEDULED, end=now + timedelta(hours=1),
        )
        return {
            "scheduled": counts[PublishStatus.SCHEDULED],
            "published_today": self.db.count_published_between(start, end),
            "failed": counts[PublishStatus.FAILED],
            "due_within_hour": len(due_soon),
        }
