"""Tests for chapter scheduling: slot distribution, tension targets and job creation."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from models.enums import ChapterJobStatus


TZ = ZoneInfo("Asia/Ho_Chi_Minh")
NOW = datetime(2026, 3, 10, 0, 30, tzinfo=timezone.utc)  # 07:30 local
TODAY = date(2026, 3, 10)


@pytest.fixture
def single_capacity_settings(tmp_path, quality_thresholds):
    from config.settings import PublishSlotConfig, Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "factory.db",
        log_dir=tmp_path / "logs",
        quality=quality_thresholds,
        chapters_per_day_default=3,
        publish_slots=[
            PublishSlotConfig(name="morning", start_hour=6, end_hour=10, capacity=1),
            PublishSlotConfig(name="afternoon", start_hour=12, end_hour=14, capacity=1),
            PublishSlotConfig(name="evening", start_hour=18, end_hour=22, capacity=1),
        ],
    )


@pytest.fixture
def scheduler(db, manager, settings):
    from workflow.chapter_scheduler import ChapterScheduler
    return ChapterScheduler(db, manager, settings)


class TestDistributeSlots:
    def test_one_per_slot_with_unit_capacity(self, single_capacity_settings):
        from workflow.chapter_scheduler import distribute_slots
        times = distribute_slots(3, single_capacity_settings.publish_slots, TODAY, TZ)
        assert [name for name, _ in times] == ["morning", "afternoon", "evening"]
        assert [t.astimezone(TZ).hour for _, t in times] == [6, 12, 18]

    def test_fills_slot_to_capacity_before_moving_on(self, settings):
        from workflow.chapter_scheduler import distribute_slots
        times = distribute_slots(9, settings.publish_slots, TODAY, TZ)
        names = [name for name, _ in times]
        assert names == ["morning"] * 7 + ["afternoon"] * 2

    def test_spreads_within_window(self, settings):
        from workflow.chapter_scheduler import distribute_slots
        times = distribute_slots(7, settings.publish_slots, TODAY, TZ)
        morning = settings.get_slot("morning")
        locals_ = [t.astimezone(TZ) for _, t in times]
        assert locals_[0].hour == 6 and locals_[0].minute == 0
        # 240 minutes / 7 chapters, floored
        assert (locals_[1] - locals_[0]).total_seconds() == 34 * 60
        for t in locals_:
            assert morning.start_hour <= t.hour < morning.end_hour

    def test_wraps_around_when_over_total_capacity(self, single_capacity_settings):
        from workflow.chapter_scheduler import distribute_slots
        times = distribute_slots(4, single_capacity_settings.publish_slots, TODAY, TZ)
        assert [name for name, _ in times] == ["morning", "afternoon", "evening", "morning"]
        assert times[3][1] == times[0][1]

    def test_zero_count(self, settings):
        from workflow.chapter_scheduler import distribute_slots
        assert distribute_slots(0, settings.publish_slots, TODAY, TZ) == []


class TestTensionTarget:
    def test_deterministic_per_production_and_chapter(self):
        from workflow.chapter_scheduler import tension_target
        assert tension_target(1, 42, 1000) == tension_target(1, 42, 1000)

    def test_within_bounds(self):
        from workflow.chapter_scheduler import tension_target
        for chapter in range(1, 500, 7):
            value = tension_target(3, chapter, 500)
            assert 10.0 <= value <= 100.0

    def test_jitter_depends_on_production(self):
        from workflow.chapter_scheduler import tension_target
        values = {tension_target(pid, 10, 100) for pid in range(1, 6)}
        assert len(values) > 1


class TestScheduleProduction:
    def test_scenario_three_slots_capacity_one(self, db, manager, single_capacity_settings):
        from workflow.chapter_scheduler import ChapterScheduler
        from workflow.production_manager import ProductionManager

        manager = ProductionManager(db, single_capacity_settings)
        scheduler = ChapterScheduler(db, manager, single_capacity_settings)
        from models.production import WorkPlan
        record = manager.admit(WorkPlan(title="Heaven Sword", chapters_per_day=3, total_chapters=50))
        manager.activate(n=1, max_active=10)

        result = scheduler.schedule_all(NOW)
        assert result.jobs_created == 3
        assert result.productions_scheduled == 1

        jobs = db.list_jobs(record.id)
        assert [j.chapter_number for j in jobs] == [1, 2, 3]
        assert all(j.status == ChapterJobStatus.PENDING for j in jobs)
        for job in jobs:
            slot = single_capacity_settings.get_slot(job.scheduled_slot)
            local = job.scheduled_time.astimezone(TZ)
            assert local.date() == TODAY
            assert slot.start_hour <= local.hour < slot.end_hour
        assert {j.scheduled_slot for j in jobs} == {"morning", "afternoon", "evening"}

    def test_second_pass_does_not_duplicate(self, scheduler, make_production, db):
        record = make_production()
        assert scheduler.schedule_all(NOW).jobs_created == 3
        assert scheduler.schedule_all(NOW).jobs_created == 0
        assert len(db.list_jobs(record.id)) == 3

    def test_continues_after_current_chapter(self, scheduler, make_production, manager, db):
        record = make_production()
        manager.record_completion(record.id, 5, "Lin Feng wins the duel.", 80, now=NOW)
        record = db.get_production(record.id)
        jobs = scheduler.schedule_production(record, 2, NOW)
        assert [j.chapter_number for j in jobs] == [6, 7]
        assert jobs[0].previous_summary == "Ch.5: Lin Feng wins the duel."

    def test_stops_at_total_chapters(self, scheduler, make_production, manager, db):
        record = make_production(total_chapters=4)
        manager.record_completion(record.id, 3, "a", 80, now=NOW)
        jobs = scheduler.schedule_production(db.get_production(record.id), 3, NOW)
        assert [j.chapter_number for j in jobs] == [4]

    def test_snapshots_context(self, scheduler, make_production, settings):
        from workflow.chapter_scheduler import tension_target
        record = make_production(objectives=["find the sword"], total_chapters=None)
        jobs = scheduler.schedule_production(record, 1, NOW)
        assert jobs[0].objectives == ["find the sword"]
        assert jobs[0].arc_number == 1
        assert jobs[0].target_intensity == tension_target(record.id, 1, settings.default_total_chapters)

    def test_failed_job_leaves_gap_filled_on_next_pass(self, scheduler, make_production, db):
        record = make_production()
        jobs = scheduler.schedule_production(record, 3, NOW)
        db.transition_write_job(jobs[0].id, ChapterJobStatus.PENDING, ChapterJobStatus.FAILED)
        db.fail_later_pending_jobs(record.id, 1, "Superseded")
        again = scheduler.schedule_production(db.get_production(record.id), 3, NOW)
        assert [j.chapter_number for j in again] == [1, 2, 3]

    def test_error_in_one_production_does_not_block_others(self, scheduler, make_production, db):
        from unittest.mock import patch
        from config.exceptions import DatabaseError
        first = make_production(title="first")
        second = make_production(title="second")
        original = db.count_open_jobs

        def flaky(production_id):
            if production_id == first.id:
                raise DatabaseError("locked")
            return original(production_id)

        with patch.object(db, "count_open_jobs", side_effect=flaky):
            result = scheduler.schedule_all(NOW)
        assert result.errors == [(first.id, "locked")]
        assert len(db.list_jobs(second.id)) == 3
