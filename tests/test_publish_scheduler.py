"""Tests for the publish scheduler: slot windows, publish passes and retries."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from models.chapter import Chapter
from models.enums import PublishStatus
from models.publish import PublishJob


TZ = ZoneInfo("Asia/Ho_Chi_Minh")
# 2026-03-10 07:30 local, inside the morning slot (06-10)
NOW = datetime(2026, 3, 10, 0, 30, tzinfo=timezone.utc)


def _chapter(db, production_id: int, number: int = 1) -> int:
    return db.save_chapter(Chapter(
        production_id=production_id, chapter_number=number, title=f"Ch {number}", content="text",
    ))


def _due_job(db, production_id: int, chapter_id: int, minutes_ago: int = 10) -> int:
    now = datetime.now(timezone.utc)
    return db.create_publish_job(PublishJob(
        production_id=production_id, chapter_id=chapter_id, chapter_number=1,
        scheduled_time=now - timedelta(minutes=minutes_ago), slot="morning",
    ))


class TestSlotWindows:
    def test_slot_for_time(self, publisher):
        assert publisher.slot_for_time(NOW) == "morning"
        # 13:00 local
        assert publisher.slot_for_time(datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)) == "afternoon"
        # 11:00 local falls between slots
        assert publisher.slot_for_time(datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc)) is None

    def test_slot_end_is_exclusive(self, publisher):
        # 10:00 local sharp
        assert publisher.slot_for_time(datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)) is None

    def test_next_slot_time_inside_open_window_is_not_in_past(self, publisher):
        when = publisher.next_slot_time("morning", NOW)
        assert NOW <= when
        local = when.astimezone(TZ)
        assert local.date() == NOW.astimezone(TZ).date()
        assert 6 <= local.hour < 10

    def test_next_slot_time_rolls_to_tomorrow_after_window(self, publisher):
        # 15:00 local, afternoon window (12-14) already closed
        later = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
        local = publisher.next_slot_time("afternoon", later).astimezone(TZ)
        assert local.day == 11
        assert 12 <= local.hour < 14

    def test_next_slot_time_is_utc(self, publisher):
        assert publisher.next_slot_time("evening", NOW).tzinfo == timezone.utc

    def test_unknown_slot(self, publisher):
        from config.exceptions import SchedulingError
        with pytest.raises(SchedulingError, match="Unknown publish slot"):
            publisher.next_slot_time("midnight", NOW)

    def test_next_available_slot(self, publisher):
        assert publisher.next_available_slot(NOW) == "morning"
        # 11:00 local: morning closed, afternoon next
        assert publisher.next_available_slot(datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc)) == "afternoon"
        # 23:00 local: tomorrow morning
        assert publisher.next_available_slot(datetime(2026, 3, 10, 16, 0, tzinfo=timezone.utc)) == "morning"


class TestSchedulePublish:
    def test_schedule_with_generated_time(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        job = publisher.schedule_publish(record.id, cid, 1, "evening", now=NOW)
        stored = db.get_publish_job(job.id)
        assert stored.status == PublishStatus.SCHEDULED
        assert publisher.slot_for_time(stored.scheduled_time) == "evening"

    def test_explicit_time_must_be_inside_slot(self, publisher, make_production, db):
        from config.exceptions import SchedulingError
        record = make_production()
        cid = _chapter(db, record.id)
        with pytest.raises(SchedulingError, match="outside slot"):
            publisher.schedule_publish(record.id, cid, 1, "evening", scheduled_time=NOW)

    def test_explicit_time_inside_slot(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        job = publisher.schedule_publish(record.id, cid, 1, "morning", scheduled_time=NOW)
        assert db.get_publish_job(job.id).scheduled_time == NOW

    def test_cancel_only_while_scheduled(self, publisher, make_production, db):
        from config.exceptions import WorkflowStateError
        record = make_production()
        cid = _chapter(db, record.id)
        first = publisher.schedule_publish(record.id, cid, 1, "morning", now=NOW)
        publisher.cancel_publish(first.id)
        assert db.get_publish_job(first.id) is None

        second = _due_job(db, record.id, cid)
        publisher.run_publish_pass()
        with pytest.raises(WorkflowStateError):
            publisher.cancel_publish(second)

    def test_cancel_missing_job(self, publisher):
        from config.exceptions import SchedulingError
        with pytest.raises(SchedulingError):
            publisher.cancel_publish(404)

    def test_reschedule_moves_slot(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        job = publisher.schedule_publish(record.id, cid, 1, "morning", now=NOW)
        evening = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)  # 19:00 local
        moved = publisher.reschedule_publish(job.id, evening)
        assert moved.slot == "evening"
        assert moved.scheduled_time == evening

    def test_reschedule_outside_slots_rejected(self, publisher, make_production, db):
        from config.exceptions import SchedulingError
        record = make_production()
        cid = _chapter(db, record.id)
        job = publisher.schedule_publish(record.id, cid, 1, "morning", now=NOW)
        with pytest.raises(SchedulingError):
            publisher.reschedule_publish(job.id, datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc))


class TestPublishPass:
    def test_overdue_job_is_published_and_chapter_visible(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid, minutes_ago=10)

        result = publisher.run_publish_pass()

        assert result.published == 1
        assert result.failed == 0
        job = db.get_publish_job(jid)
        assert job.status == PublishStatus.PUBLISHED
        assert job.published_at is not None
        assert db.get_chapter(cid).is_visible

    def test_future_job_is_left_alone(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid, minutes_ago=-30)
        assert publisher.run_publish_pass().published == 0
        assert db.get_publish_job(jid).status == PublishStatus.SCHEDULED
        assert not db.get_chapter(cid).is_visible

    def test_failure_is_recorded_then_retried(self, publisher, make_production, db):
        from config.exceptions import DatabaseError
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid)

        with patch.object(db, "complete_publish_job", side_effect=DatabaseError("disk full")):
            result = publisher.run_publish_pass()
        assert result.failed == 1
        job = db.get_publish_job(jid)
        assert job.status == PublishStatus.FAILED
        assert job.retry_count == 1
        assert "disk full" in job.error_message
        assert not db.get_chapter(cid).is_visible

        retried = publisher.retry_failed_publishes()
        assert retried.published == 1
        assert db.get_publish_job(jid).status == PublishStatus.PUBLISHED
        assert db.get_chapter(cid).is_visible

    def test_retry_ceiling(self, publisher, make_production, db):
        from config.exceptions import DatabaseError
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid)
        with patch.object(db, "complete_publish_job", side_effect=DatabaseError("disk full")):
            publisher.run_publish_pass()
            publisher.retry_failed_publishes(max_retries=3)
            publisher.retry_failed_publishes(max_retries=3)
            assert db.get_publish_job(jid).retry_count == 3
            assert publisher.retry_failed_publishes(max_retries=3).failed == 0

    def test_unexpected_error_is_recorded_not_raised(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid)
        other = _due_job(db, record.id, _chapter(db, record.id, 2), minutes_ago=5)
        real_complete = db.complete_publish_job

        def complete(job_id, chapter_id, now):
            if job_id == jid:
                raise OSError("disk I/O")
            return real_complete(job_id, chapter_id, now)

        with patch.object(db, "complete_publish_job", side_effect=complete):
            result = publisher.run_publish_pass()

        assert (result.published, result.failed) == (1, 1)
        job = db.get_publish_job(jid)
        assert job.status == PublishStatus.FAILED
        assert job.retry_count == 1
        assert "disk I/O" in job.error_message
        assert db.get_publish_job(other).status == PublishStatus.PUBLISHED

    def test_stale_publishing_job_is_rescheduled_and_published(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid)
        long_ago = datetime.now(timezone.utc) - timedelta(hours=2)
        db.claim_publish_job(jid, PublishStatus.SCHEDULED, PublishStatus.PUBLISHING, now=long_ago)

        assert publisher.recover_stale_publishes() == 1
        assert db.get_publish_job(jid).status == PublishStatus.SCHEDULED
        assert publisher.run_publish_pass().published == 1
        assert db.get_chapter(cid).is_visible

    def test_fresh_publishing_claim_is_left_alone(self, publisher, make_production, db):
        record = make_production()
        jid = _due_job(db, record.id, _chapter(db, record.id))
        db.claim_publish_job(jid, PublishStatus.SCHEDULED, PublishStatus.PUBLISHING)
        assert publisher.recover_stale_publishes() == 0
        assert db.get_publish_job(jid).status == PublishStatus.PUBLISHING

    def test_job_claimed_elsewhere_is_skipped(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        jid = _due_job(db, record.id, cid)
        due = db.list_due_publish_jobs(datetime.now(timezone.utc))
        db.claim_publish_job(jid, PublishStatus.SCHEDULED, PublishStatus.PUBLISHING)
        with patch.object(db, "list_due_publish_jobs", return_value=due):
            result = publisher.run_publish_pass()
        assert (result.published, result.failed) == (0, 0)


class TestQueries:
    def test_today_schedule_groups_by_slot(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        publisher.schedule_publish(record.id, cid, 1, "morning", now=NOW)
        publisher.schedule_publish(record.id, cid, 1, "evening", now=NOW)
        schedule = publisher.get_today_schedule(NOW)
        assert list(schedule) == ["morning", "afternoon", "evening"]
        assert [len(v) for v in schedule.values()] == [1, 0, 1]

    def test_publishing_stats(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        _due_job(db, record.id, cid)
        publisher.run_publish_pass()
        stats = publisher.get_publishing_stats()
        assert stats["published_today"] == 1
        assert stats["scheduled"] == 0

    def test_upcoming_publishes_window(self, publisher, make_production, db):
        record = make_production()
        cid = _chapter(db, record.id)
        morning = publisher.schedule_publish(record.id, cid, 1, "morning", now=NOW)
        evening = publisher.schedule_publish(record.id, cid, 1, "evening", now=NOW)
        db.create_publish_job(PublishJob(
            production_id=record.id, chapter_id=cid, chapter_number=1,
            scheduled_time=NOW - timedelta(hours=1), slot="morning",
        ))

        soon = publisher.get_upcoming_publishes(hours=3, now=NOW)
        assert [j.id for j in soon] == [morning.id]
        today = publisher.get_upcoming_publishes(hours=24, now=NOW)
        assert [j.id for j in today] == [morning.id, evening.id]
