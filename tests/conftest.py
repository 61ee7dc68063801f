"""Shared pytest fixtures for the novel-factory test suite."""

import pytest
from unittest.mock import MagicMock, AsyncMock


# A short chapter that passes the gate with the test thresholds below: it has
# a transition marker, all five forward-movement categories, no power jump,
# ~18% dialogue and mid-length paragraphs.
PASSING_CHAPTER = (
    "The next morning Lin Feng walked to the old library at the edge of the valley. "
    "He had decided to search the ancient shelves for answers about the missing caravan.\n\n"
    "\"Do you know where the records are kept?\" he asked the keeper, who trusted him "
    "enough to unlock the back room.\n\n"
    "Inside he discovered a faded scroll about the legend of the river spirit, and he "
    "learned a new breathing method from its margins.\n\n"
    "\"Keep this between us, young man, and come back tomorrow,\" the keeper said quietly, "
    "before returning to the dusty front desk."
)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite database path."""
    return tmp_path / "test_factory.db"


@pytest.fixture
def db(tmp_db_path):
    """Return an initialized Database instance backed by a temp file."""
    from models.database import Database
    return Database(tmp_db_path)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def quality_thresholds():
    """Thresholds scaled down for the short chapters used in tests."""
    from config.settings import QualityThresholds
    return QualityThresholds(word_count_min=50, word_count_max=2000)


@pytest.fixture
def settings(tmp_path, quality_thresholds):
    """Return a Settings instance with all paths pointing to tmp_path."""
    from config.settings import Settings
    return Settings(
        _env_file=None,
        sqlite_db_path=tmp_path / "factory.db",
        log_dir=tmp_path / "logs",
        quality=quality_thresholds,
        generation_retry_delay=0.0,
        chapters_per_day_default=3,
        default_total_chapters=100,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def manager(db, settings):
    from workflow.production_manager import ProductionManager
    return ProductionManager(db, settings)


@pytest.fixture
def publisher(db, settings):
    import random
    from workflow.publish_scheduler import PublishScheduler
    return PublishScheduler(db, settings, rng=random.Random(7))


@pytest.fixture
def make_production(manager):
    """Admit (and by default activate) a production from keyword overrides."""
    from models.enums import ProductionStatus
    from models.production import WorkPlan

    def _make(activate: bool = True, **overrides):
        plan = WorkPlan(
            title=overrides.pop("title", "Heaven Sword"),
            genre=overrides.pop("genre", "xianxia"),
            total_chapters=overrides.pop("total_chapters", 10),
            chapters_per_day=overrides.pop("chapters_per_day", 3),
            **overrides,
        )
        record = manager.admit(plan)
        if activate:
            manager.db.claim_production(record.id, ProductionStatus.QUEUED, ProductionStatus.ACTIVE)
            record = manager.db.get_production(record.id)
        return record

    return _make


# ---------------------------------------------------------------------------
# Generation engine mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_llm():
    """Return a MagicMock replacing AgentSDKClient."""
    from tools.agent_sdk_client import GenerationResult

    llm = MagicMock()
    llm.generate_with_retry = AsyncMock(return_value=GenerationResult(
        text='{"title": "The Library", "content": "Some chapter text.", "summary": "He reads."}',
        model="claude-opus-4-6",
        usage={"input_tokens": 10, "output_tokens": 20, "cost_usd": 0.001},
    ))
    llm.get_usage_summary.return_value = {"total_calls": 1}
    return llm


def chapter_draft(content: str = PASSING_CHAPTER, **overrides) -> dict:
    """Writer-agent style result dict."""
    from tools.text_utils import count_words
    draft = {
        "title": "The Library",
        "content": content,
        "summary": "Lin Feng finds a scroll in the valley library.",
        "word_count": count_words(content),
        "realm_index": None,
        "deceased_characters": [],
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def mock_writer():
    """A writer whose drafts and revisions pass the gate."""
    writer = MagicMock()
    writer.write_chapter = AsyncMock(return_value=chapter_draft())
    writer.revise_chapter = AsyncMock(return_value=chapter_draft())
    writer.llm.get_usage_summary.return_value = {"total_calls": 0}
    return writer


@pytest.fixture
def passing_chapter():
    return PASSING_CHAPTER


@pytest.fixture
def make_draft():
    return chapter_draft
