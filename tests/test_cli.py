"""Tests for the operator CLI commands."""

import pytest
from click.testing import CliRunner


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("SQLITE_DB_PATH", str(db_path))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr("config.settings._settings_instance", None)
    return db_path


class TestCli:
    def test_help_lists_commands(self, cli_env):
        from cli.main import cli
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("daily-tick", "main-tick", "admit", "resume", "stats", "schedule"):
            assert command in result.output

    def test_admit_queues_production(self, cli_env):
        from cli.main import cli
        from models.database import Database
        from models.enums import ProductionStatus

        result = CliRunner().invoke(cli, ["admit", "-t", "Heaven Sword", "-g", "xianxia", "-c", "50", "-d", "4"])

        assert result.exit_code == 0, result.output
        records = Database(cli_env).list_productions()
        assert len(records) == 1
        assert records[0].status == ProductionStatus.QUEUED
        assert records[0].total_chapters == 50
        assert records[0].chapters_per_day == 4

    def test_admit_open_ended(self, cli_env):
        from cli.main import cli
        from models.database import Database

        result = CliRunner().invoke(cli, ["admit", "-t", "Endless Road", "--open-ended"])

        assert result.exit_code == 0, result.output
        assert Database(cli_env).list_productions()[0].total_chapters is None

    def test_resume_unknown_production_fails(self, cli_env):
        from cli.main import cli
        result = CliRunner().invoke(cli, ["resume", "999"])
        assert result.exit_code == 1

    def test_stats_and_schedule_render(self, cli_env):
        from cli.main import cli
        runner = CliRunner()
        runner.invoke(cli, ["admit", "-t", "Heaven Sword"])

        stats = runner.invoke(cli, ["stats", "--list"])
        assert stats.exit_code == 0, stats.output
        assert "Heaven Sword" in stats.output

        schedule = runner.invoke(cli, ["schedule"])
        assert schedule.exit_code == 0, schedule.output

    def test_schedule_upcoming_lists_releases(self, cli_env):
        from datetime import timedelta
        from cli.main import cli
        from models.chapter import Chapter
        from models.database import Database
        from models.publish import PublishJob
        from tools.time_utils import utc_now

        runner = CliRunner()
        runner.invoke(cli, ["admit", "-t", "Heaven Sword"])
        db = Database(cli_env)
        chapter_id = db.save_chapter(Chapter(production_id=1, chapter_number=1, content="text"))
        db.create_publish_job(PublishJob(
            production_id=1, chapter_id=chapter_id, chapter_number=1,
            scheduled_time=utc_now() + timedelta(hours=3), slot="evening",
        ))

        result = runner.invoke(cli, ["schedule", "--upcoming", "12"])

        assert result.exit_code == 0, result.output
        assert "Next 12h" in result.output
        assert "evening" in result.output

    def test_schedule_upcoming_empty(self, cli_env):
        from cli.main import cli
        result = CliRunner().invoke(cli, ["schedule", "--upcoming", "6"])
        assert result.exit_code == 0, result.output
        assert "Nothing scheduled" in result.output

    def test_invalid_configuration_exits_cleanly(self, cli_env, monkeypatch):
        from cli.main import cli
        monkeypatch.setenv("MAX_REWRITE_ATTEMPTS", "0")
        result = CliRunner().invoke(cli, ["stats"])
        assert result.exit_code == 2
        assert "max_rewrite_attempts" in result.output
