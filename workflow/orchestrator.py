"""Tick driver: the two externally triggered entry points of the factory.

``run_daily_tick`` and ``run_main_loop_tick`` are idempotent at the job
level and safe to re-run after an interruption. Per-item failures are
caught, logged, recorded in ``factory_errors`` and counted; only a failure
in shared setup escapes a tick.
"""

import asyncio
import logging
import random
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from config.exceptions import ClaimConflictError, FactoryError
from config.settings import Settings
from models.database import Database
from models.enums import ChapterJobStatus, ErrorSeverity, ProductionStatus
from quality.gate import QualityGate
from tools.time_utils import day_bounds_utc, utc_now
from workflow.callbacks import LoggingCallback, WorkflowCallback
from workflow.chapter_scheduler import ChapterScheduler
from workflow.graph import ChapterPipeline
from workflow.production_manager import ProductionManager
from workflow.publish_scheduler import PublishScheduler

logger = logging.getLogger(__name__)


@dataclass
class DailyTickResult:
    enabled: bool = True
    counters_reset: Optional[int] = None  # None = already reset today
    promoted: int = 0
    errors_deleted: int = 0
    errors_resolved: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MainTickResult:
    enabled: bool = True
    stale_recovered: int = 0
    jobs_scheduled: int = 0
    chapters_written: int = 0
    chapters_failed: int = 0
    chapters_published: int = 0
    publish_failed: int = 0
    publish_retried: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _WorkerCounts:
    written: int = 0
    failed: int = 0
    errors: int = 0


class Orchestrator:
    """Composes the production state machine, schedulers and chapter pipeline."""

    def __init__(
        self,
        db: Database,
        settings: Settings,
        writer,
        gate: Optional[QualityGate] = None,
        callback: Optional[WorkflowCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.settings = settings
        self.callback = callback or LoggingCallback()
        self.manager = ProductionManager(db, settings)
        self.scheduler = ChapterScheduler(db, self.manager, settings)
        self.publisher = PublishScheduler(db, settings, rng)
        self.pipeline = ChapterPipeline(
            db, settings, self.manager, self.publisher, writer,
            gate=gate, callback=self.callback,
        )

    def _record_error(
        self,
        error_type: str,
        error: Exception,
        production_id: Optional[int] = None,
        chapter_number: Optional[int] = None,
    ) -> None:
        try:
            self.db.log_error(error_type, str(error), ErrorSeverity.ERROR,
                              production_id=production_id, chapter_number=chapter_number)
        except FactoryError as e:
            logger.error("Could not record %s error: %s", error_type, e)

    # ---- Daily tick ----

    async def run_daily_tick(self, now: Optional[datetime] = None) -> DailyTickResult:
        """Reset quotas, promote queued productions, clean the error log, record stats."""
        now = now or utc_now()
        if not self.settings.factory_enabled:
            logger.info("Factory disabled; daily tick skipped")
            return DailyTickResult(enabled=False)

        result = DailyTickResult()

        try:
            result.counters_reset = self.manager.reset_daily_counters(now)
        except FactoryError as e:
            logger.error("Daily counter reset failed: %s", e)
            self._record_error("daily_reset", e)
            result.errors += 1

        try:
            result.promoted = len(self.manager.activate(now=now))
        except FactoryError as e:
            logger.error("Capacity promotion failed: %s", e)
            self._record_error("activation", e)
            result.errors += 1

        try:
            result.errors_deleted, result.errors_resolved = self.db.cleanup_errors(
                delete_before=now - timedelta(days=self.settings.error_retention_days),
                resolve_before=now - timedelta(days=self.settings.error_auto_resolve_days),
                now=now,
            )
        except FactoryError as e:
            logger.error("Error log cleanup failed: %s", e)
            result.errors += 1

        try:
            self.record_daily_stats(now, promoted=result.promoted)
        except FactoryError as e:
            logger.error("Daily stats failed: %s", e)
            result.errors += 1

        self.callback.on_tick_complete("daily", result.to_dict())
        return result

    def record_daily_stats(self, now: datetime, promoted: int = 0) -> None:
        today = self.manager.today(now)
        start, end = day_bounds_utc(today, self.settings.tz)
        counts = self.db.count_productions_by_status()
        previous = self.db.get_daily_stats(today) or {}
        self.db.upsert_daily_stats(
            today,
            productions_active=counts[ProductionStatus.ACTIVE] + counts[ProductionStatus.WRITING],
            productions_queued=counts[ProductionStatus.QUEUED],
            productions_paused=counts[ProductionStatus.PAUSED],
            productions_finished=counts[ProductionStatus.FINISHED],
            productions_promoted=(previous.get("productions_promoted") or 0) + promoted,
            chapters_written=self.db.count_jobs_completed_between(start, end),
            chapters_published=self.db.count_published_between(start, end),
            errors=self.db.count_errors_between(start, end),
        )

    # ---- Main-loop tick ----

    def recover_stale_jobs(self, now: Optional[datetime] = None) -> int:
        """Return stuck write jobs to ``pending`` (or fail them once out of attempts),
        release stuck production claims and reschedule stuck publish jobs."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self.settings.stale_claim_minutes)
        recovered = 0
        for job in self.db.list_stale_jobs(cutoff):
            if job.attempt_count >= self.settings.max_job_attempts:
                message = f"Abandoned after {job.attempt_count} attempts"
                if self.db.transition_write_job(job.id, job.status, ChapterJobStatus.FAILED,
                                                error_message=message):
                    self.db.fail_later_pending_jobs(
                        job.production_id, job.chapter_number,
                        f"Superseded: chapter {job.chapter_number} failed",
                    )
                    self.db.log_error("stale_job", message, ErrorSeverity.WARNING,
                                      production_id=job.production_id,
                                      chapter_number=job.chapter_number)
                    self.manager.record_failure(job.production_id, message, now=now)
                    recovered += 1
            elif self.db.transition_write_job(job.id, job.status, ChapterJobStatus.PENDING):
                recovered += 1
            logger.warning("Recovered stale job %d (production %d ch.%d, was %s)",
                           job.id, job.production_id, job.chapter_number, job.status.value)
        recovered += self.manager.recover_stale_claims(now)
        return recovered + self.publisher.recover_stale_publishes(now)

    async def _run_production_jobs(self, production_id: int, job_ids: list[int]) -> _WorkerCounts:
        """Run one production's jobs in chapter order; stop at the first non-completion."""
        counts = _WorkerCounts()
        for job_id in job_ids:
            try:
                state = await self.pipeline.run_job(job_id)
            except ClaimConflictError as e:
                # Another worker owns the job now; leave it to them
                logger.warning("Job %d of production %d lost its claim: %s", job_id, production_id, e)
                self._record_error("job_aborted", e, production_id=production_id)
                counts.errors += 1
                break
            except Exception as e:
                logger.error("Job %d of production %d aborted: %s", job_id, production_id, e)
                chapter_number = None
                try:
                    aborted = self.pipeline.abort_job(job_id, f"Job aborted: {e}")
                    if aborted is not None:
                        chapter_number = aborted.chapter_number
                except FactoryError as abort_error:
                    logger.error("Could not fail aborted job %d: %s", job_id, abort_error)
                self._record_error("job_aborted", e, production_id, chapter_number)
                counts.errors += 1
                break
            outcome = state.get("outcome")
            if outcome == "completed":
                counts.written += 1
                continue
            if outcome == "failed":
                counts.failed += 1
            break
        return counts

    async def run_main_loop_tick(self, now: Optional[datetime] = None) -> MainTickResult:
        """Schedule, write, gate, repair and publish; one production never aborts another."""
        now = now or utc_now()
        if not self.settings.factory_enabled:
            logger.info("Factory disabled; main-loop tick skipped")
            return MainTickResult(enabled=False)

        result = MainTickResult()

        try:
            result.stale_recovered = self.recover_stale_jobs(now)
        except Exception as e:
            logger.error("Stale claim recovery failed: %s", e)
            self._record_error("stale_recovery", e)
            result.errors += 1

        scheduling = self.scheduler.schedule_all(now)
        result.jobs_scheduled = scheduling.jobs_created
        result.errors += len(scheduling.errors)
        for production_id, message in scheduling.errors:
            self._record_error("scheduling", FactoryError(message), production_id=production_id)

        # Group by production, chapters ascending; productions run concurrently
        by_production: "OrderedDict[int, list]" = OrderedDict()
        for job in self.db.list_pending_jobs(limit=self.settings.pending_jobs_per_tick):
            by_production.setdefault(job.production_id, []).append(job)

        semaphore = asyncio.Semaphore(self.settings.worker_concurrency)

        async def _worker(production_id: int, jobs: list) -> _WorkerCounts:
            async with semaphore:
                ordered = sorted(jobs, key=lambda j: j.chapter_number)
                return await self._run_production_jobs(production_id, [j.id for j in ordered])

        outcomes = await asyncio.gather(
            *(_worker(pid, jobs) for pid, jobs in by_production.items()),
            return_exceptions=True,
        )
        for production_id, item in zip(by_production, outcomes):
            if isinstance(item, _WorkerCounts):
                result.chapters_written += item.written
                result.chapters_failed += item.failed
                result.errors += item.errors
            elif isinstance(item, Exception):
                logger.error("Worker for production %d crashed: %s", production_id, item)
                self._record_error("worker_crash", item, production_id=production_id)
                result.errors += 1
            else:
                raise item

        try:
            published = self.publisher.run_publish_pass(now)
            result.chapters_published += published.published
            result.publish_failed += published.failed
            retried = self.publisher.retry_failed_publishes(now=now)
            result.publish_retried = retried.published + retried.failed
            result.chapters_published += retried.published
            result.publish_failed += retried.failed
        except Exception as e:
            logger.error("Publish pass failed: %s", e)
            self._record_error("publish_pass", e)
            result.errors += 1

        self.callback.on_tick_complete("main", result.to_dict())
        return result
