"""Production state machine: admission, capacity promotion, quota and failure tracking.

Every mutation of a ``ProductionRecord`` goes through this class. Status
changes are validated against the transition table before they are written.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import Optional

from config.exceptions import WorkflowStateError
from config.settings import Settings
from models.database import Database
from models.enums import ProductionStatus, ensure_transition
from models.production import ProductionContext, ProductionRecord, ScoreHistory, WorkPlan
from tools.time_utils import day_bounds_utc, reference_date, utc_now

logger = logging.getLogger(__name__)

# Upper bound on the carried-forward story summary
_RUNNING_SUMMARY_MAX_CHARS = 4000


def arc_number_for(chapter_number: int, chapters_per_arc: int) -> int:
    return max(1, math.ceil(chapter_number / chapters_per_arc))


def _append_summary(running: str, chapter_number: int, summary: str) -> str:
    if not summary:
        return running
    text = f"{running}\nCh.{chapter_number}: {summary}".strip()
    if len(text) > _RUNNING_SUMMARY_MAX_CHARS:
        text = text[-_RUNNING_SUMMARY_MAX_CHARS:]
        # Drop the partial first line
        newline = text.find("\n")
        if newline != -1:
            text = text[newline + 1:]
    return text


class ProductionManager:
    """Owns the lifecycle and daily quota of every production."""

    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings

    def _get(self, production_id: int) -> ProductionRecord:
        record = self.db.get_production(production_id)
        if record is None:
            raise WorkflowStateError(f"Production {production_id} not found")
        record.score_history.capacity = self.settings.score_history_size
        return record

    def _set_status(self, record: ProductionRecord, target: ProductionStatus) -> None:
        ensure_transition(record.status, target)
        record.status = target

    def today(self, now: Optional[datetime] = None) -> date:
        return reference_date(now or utc_now(), self.settings.tz)

    # ---- Admission and promotion ----

    def admit(self, plan: WorkPlan, now: Optional[datetime] = None) -> ProductionRecord:
        """Create a ``queued`` production from an accepted work plan."""
        if not plan.title.strip():
            raise ValueError("Work plan title must not be empty")
        if plan.total_chapters is not None and plan.total_chapters < 1:
            raise ValueError("total_chapters must be >= 1 when given")
        record = ProductionRecord(
            title=plan.title.strip(),
            genre=plan.genre,
            premise=plan.premise,
            persona=plan.persona,
            priority=plan.priority,
            total_chapters=plan.total_chapters,
            chapters_per_day=plan.chapters_per_day or self.settings.chapters_per_day_default,
            context=ProductionContext(objectives=list(plan.objectives)),
            score_history=ScoreHistory(capacity=self.settings.score_history_size),
            queued_at=now or utc_now(),
        )
        record.id = self.db.create_production(record)
        logger.info("Admitted production %d '%s' (priority %d)", record.id, record.title, record.priority)
        return self._get(record.id)

    def activate(
        self,
        n: Optional[int] = None,
        max_active: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[int]:
        """Promote up to ``n`` queued productions, never exceeding ``max_active`` active ones."""
        n = self.settings.activations_per_day if n is None else n
        max_active = self.settings.max_active_productions if max_active is None else max_active
        promoted = self.db.activate_queued(n, max_active, now)
        if promoted:
            logger.info("Activated %d productions: %s", len(promoted), promoted)
        return promoted

    # ---- Writing claim ----

    def begin_writing(self, production_id: int) -> bool:
        """active -> writing; False when another worker holds the production."""
        return self.db.claim_production(production_id, ProductionStatus.ACTIVE, ProductionStatus.WRITING)

    def release(self, production_id: int) -> bool:
        """writing -> active, for paths that neither complete nor fail a chapter."""
        return self.db.claim_production(production_id, ProductionStatus.WRITING, ProductionStatus.ACTIVE)

    # ---- Outcomes ----

    def record_completion(
        self,
        production_id: int,
        chapter_number: int,
        summary: str,
        score: float,
        realm_index: Optional[int] = None,
        deceased_characters: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> ProductionRecord:
        """Advance the production past ``chapter_number`` (caller guarantees order)."""
        now = now or utc_now()
        today = self.today(now)
        record = self._get(production_id)

        if chapter_number < record.current_chapter:
            raise WorkflowStateError(
                f"Production {production_id} is at chapter {record.current_chapter}; "
                f"cannot record chapter {chapter_number}"
            )

        record.current_chapter = chapter_number
        if record.last_write_date != today:
            record.last_write_date = today
            record.chapters_written_today = 1
        else:
            record.chapters_written_today += 1
        record.running_summary = _append_summary(record.running_summary, chapter_number, summary)
        record.score_history.append(score)
        record.consecutive_error_count = 0

        ctx = record.context
        arc = arc_number_for(chapter_number, self.settings.chapters_per_arc)
        if arc != ctx.arc_number:
            ctx.arc_number = arc
            ctx.arc_start_realm_index = ctx.realm_index
            logger.info("Production %d entered arc %d", production_id, arc)
        if realm_index is not None:
            if ctx.arc_start_realm_index is None:
                ctx.arc_start_realm_index = realm_index
            ctx.realm_index = realm_index
        for name in deceased_characters or []:
            if name not in ctx.deceased_characters:
                ctx.deceased_characters.append(name)

        if record.is_complete:
            self._set_status(record, ProductionStatus.FINISHED)
            record.finished_at = now
            logger.info("Production %d finished at chapter %d", production_id, chapter_number)
        elif record.status == ProductionStatus.WRITING:
            self._set_status(record, ProductionStatus.ACTIVE)

        self.db.update_production(record)
        return record

    def record_failure(
        self,
        production_id: int,
        message: str,
        pause_threshold: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ProductionRecord:
        """Count a consecutive failure; pause once the count reaches ``pause_threshold``."""
        threshold = pause_threshold or self.settings.pause_after_errors
        record = self._get(production_id)
        record.consecutive_error_count += 1

        if record.consecutive_error_count >= threshold and record.status in (
            ProductionStatus.ACTIVE, ProductionStatus.WRITING,
        ):
            self._set_status(record, ProductionStatus.PAUSED)
            record.paused_at = now or utc_now()
            record.pause_reason = (
                f"Paused after {record.consecutive_error_count} consecutive errors: {message}"
            )
            logger.warning("Production %d paused: %s", production_id, record.pause_reason)
        elif record.status == ProductionStatus.WRITING:
            self._set_status(record, ProductionStatus.ACTIVE)

        self.db.update_production(record)
        return record

    def resume_production(self, production_id: int) -> ProductionRecord:
        """Return a paused (or errored) production to ``active`` with a clean error count."""
        record = self._get(production_id)
        self._set_status(record, ProductionStatus.ACTIVE)
        record.paused_at = None
        record.pause_reason = None
        record.consecutive_error_count = 0
        self.db.update_production(record)
        logger.info("Production %d resumed", production_id)
        return record

    # ---- Daily maintenance ----

    def reset_daily_counters(self, now: Optional[datetime] = None) -> Optional[int]:
        """Zero today's quota counters once per reference-timezone day.

        Returns the number of productions reset, or None if today was already reset.
        """
        now = now or utc_now()
        reset = self.db.reset_daily_counters(self.today(now), now)
        if reset is None:
            logger.debug("Daily counters already reset for %s", self.today(now))
        else:
            logger.info("Reset daily counters for %d productions", reset)
        return reset

    def recover_stale_claims(self, now: Optional[datetime] = None) -> int:
        """Return productions stuck in ``writing`` past the stale window to ``active``."""
        cutoff = (now or utc_now()) - timedelta(minutes=self.settings.stale_claim_minutes)
        recovered = 0
        for record in self.db.list_stuck_productions(cutoff):
            if self.release(record.id):
                recovered += 1
                logger.warning("Recovered stale writing claim on production %d", record.id)
        return recovered

    # ---- Queries ----

    def productions_needing_chapters(
        self,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[tuple[ProductionRecord, int]]:
        """Active productions with quota left today, paired with the chapters they need."""
        today = self.today(now)
        limit = self.settings.productions_per_tick if limit is None else limit
        result = []
        for record in self.db.list_productions(ProductionStatus.ACTIVE, limit=limit):
            needed = record.chapters_needed(today)
            if needed <= 0 or record.is_complete:
                continue
            result.append((record, needed))
        return result

    def get_production_stats(self, now: Optional[datetime] = None) -> dict:
        now = now or utc_now()
        counts = self.db.count_productions_by_status()
        start, end = day_bounds_utc(self.today(now), self.settings.tz)
        return {
            "queued": counts[ProductionStatus.QUEUED],
            "active": counts[ProductionStatus.ACTIVE] + counts[ProductionStatus.WRITING],
            "writing": counts[ProductionStatus.WRITING],
            "paused": counts[ProductionStatus.PAUSED],
            "finished": counts[ProductionStatus.FINISHED],
            "errored": counts[ProductionStatus.ERROR],
            "chapters_today": self.db.count_jobs_completed_between(start, end),
        }
