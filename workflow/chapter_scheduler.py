"""Chapter scheduler: turns each active production's daily quota into write jobs."""

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from config.exceptions import FactoryError
from config.settings import PublishSlotConfig, Settings
from models.chapter import ChapterWriteJob
from models.database import Database
from models.production import ProductionRecord
from tools.time_utils import local_datetime, utc_now
from workflow.production_manager import ProductionManager, arc_number_for

logger = logging.getLogger(__name__)

_TENSION_MIN = 10.0
_TENSION_MAX = 100.0
_TENSION_BASE = 40.0
_TENSION_WAVE_AMPLITUDE = 30.0
_TENSION_WAVE_FREQUENCY = 0.05
_TENSION_PROGRESS_WEIGHT = 30.0
_TENSION_JITTER = 10.0


def tension_target(
    production_id: int,
    chapter_number: int,
    total_chapters: int,
) -> float:
    """Target intensity: a wave that trends upward with overall progress.

    The jitter is seeded by (production, chapter) so re-scheduling the same
    chapter yields the same target.
    """
    progress = chapter_number / max(1, total_chapters)
    wave = math.sin(chapter_number * _TENSION_WAVE_FREQUENCY) * _TENSION_WAVE_AMPLITUDE
    jitter = random.Random(f"{production_id}:{chapter_number}").uniform(-_TENSION_JITTER, _TENSION_JITTER)
    value = _TENSION_BASE + wave + progress * _TENSION_PROGRESS_WEIGHT + jitter
    return round(max(_TENSION_MIN, min(_TENSION_MAX, value)), 2)


def distribute_slots(
    count: int,
    slots: list[PublishSlotConfig],
    day: date,
    tz,
) -> list[tuple[str, datetime]]:
    """Assign ``count`` chapters round-robin across ``slots``, filling each to capacity.

    Within a slot the i-th chapter lands at ``start + duration / capacity * i``
    so that releases are spread across the window. Past the combined capacity
    of all slots the assignment wraps to the first slot again and repeats the
    same release times; the daily quota normally keeps ``count`` below that.
    """
    assignments = []
    slot_index = 0
    position = 0
    for _ in range(count):
        slot = slots[slot_index]
        offset = math.floor(slot.duration_minutes / slot.capacity * position)
        start = local_datetime(day, slot.start_hour, tz)
        assignments.append((slot.name, start + timedelta(minutes=offset)))
        position += 1
        if position >= slot.capacity:
            slot_index = (slot_index + 1) % len(slots)
            position = 0
    return assignments


def _previous_summary(record: ProductionRecord) -> str:
    lines = [line for line in record.running_summary.splitlines() if line.strip()]
    return lines[-1] if lines else ""


@dataclass
class SchedulingResult:
    productions_scheduled: int = 0
    jobs_created: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)


class ChapterScheduler:
    """Creates ``pending`` chapter write jobs for productions that still owe chapters today."""

    def __init__(self, db: Database, manager: ProductionManager, settings: Settings):
        self.db = db
        self.manager = manager
        self.settings = settings

    def schedule_production(
        self,
        record: ProductionRecord,
        chapters_needed: int,
        now: Optional[datetime] = None,
    ) -> list[ChapterWriteJob]:
        """Create up to ``chapters_needed`` jobs, minus those still open from earlier passes."""
        now = now or utc_now()
        open_jobs = self.db.count_open_jobs(record.id)
        to_create = chapters_needed - open_jobs
        first = max(record.current_chapter, self.db.max_open_chapter(record.id) or 0) + 1
        if record.total_chapters is not None:
            to_create = min(to_create, record.total_chapters - first + 1)
        if to_create <= 0:
            return []

        total = record.total_chapters or self.settings.default_total_chapters
        times = distribute_slots(to_create, self.settings.publish_slots,
                                 self.manager.today(now), self.settings.tz)
        previous_summary = _previous_summary(record)

        created = []
        for offset, (slot_name, scheduled_time) in enumerate(times):
            chapter_number = first + offset
            job = ChapterWriteJob(
                production_id=record.id,
                chapter_number=chapter_number,
                scheduled_slot=slot_name,
                scheduled_time=scheduled_time,
                previous_summary=previous_summary,
                objectives=list(record.context.objectives),
                target_intensity=tension_target(record.id, chapter_number, total),
                arc_number=arc_number_for(chapter_number, self.settings.chapters_per_arc),
            )
            job.id = self.db.create_write_job(job)
            if job.id is None:
                continue
            created.append(job)

        logger.info("Scheduled %d chapters for production %d starting at ch.%d",
                    len(created), record.id, first)
        return created

    def schedule_all(self, now: Optional[datetime] = None) -> SchedulingResult:
        """One scheduling pass; a failing production is logged and skipped."""
        now = now or utc_now()
        result = SchedulingResult()
        for record, needed in self.manager.productions_needing_chapters(now=now):
            try:
                jobs = self.schedule_production(record, needed, now)
            except (FactoryError, ValueError) as e:
                logger.error("Scheduling failed for production %d: %s", record.id, e)
                result.errors.append((record.id, str(e)))
                continue
            if jobs:
                result.productions_scheduled += 1
                result.jobs_created += len(jobs)
        return result
