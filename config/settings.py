"""Configuration settings loaded from .env file."""

from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from config.exceptions import InvalidConfigError


class PublishSlotConfig(BaseModel):
    """One daily release window, in reference-timezone hours [start, end)."""
    name: str
    start_hour: int
    end_hour: int
    capacity: int

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("slot capacity must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_hours(self) -> "PublishSlotConfig":
        if not (0 <= self.start_hour < self.end_hour <= 24):
            raise ValueError(
                f"slot '{self.name}' hours must satisfy 0 <= start ({self.start_hour}) "
                f"< end ({self.end_hour}) <= 24"
            )
        return self

    @property
    def duration_minutes(self) -> int:
        return (self.end_hour - self.start_hour) * 60


def _default_slots() -> list[PublishSlotConfig]:
    return [
        PublishSlotConfig(name="morning", start_hour=6, end_hour=10, capacity=7),
        PublishSlotConfig(name="afternoon", start_hour=12, end_hour=14, capacity=6),
        PublishSlotConfig(name="evening", start_hour=18, end_hour=22, capacity=7),
    ]


class QualityThresholds(BaseModel):
    """Per-dimension minimums and maximums used by the quality gate."""
    continuity_min: float = 70
    repetition_max: float = 30
    power_sanity_min: float = 70
    power_delta_max: int = 2
    new_info_min: int = 2
    word_count_min: int = 2000
    word_count_max: int = 4000
    dialogue_ratio_min: float = 0.10
    dialogue_ratio_max: float = 0.60
    paragraph_avg_min: int = 50
    paragraph_avg_max: int = 500
    auto_rewrite_below: float = 50
    human_review_below: float = 65
    beat_repeat_threshold: int = 2
    repetition_window: int = 10
    phrase_window: int = 3
    cliche_max: float = 40
    exposition_max: float = 30
    dialogue_quality_min: float = 60

    @model_validator(mode="after")
    def validate_ranges(self) -> "QualityThresholds":
        if self.word_count_min >= self.word_count_max:
            raise ValueError(
                f"word_count_min ({self.word_count_min}) must be less than "
                f"word_count_max ({self.word_count_max})"
            )
        if self.dialogue_ratio_min >= self.dialogue_ratio_max:
            raise ValueError("dialogue_ratio_min must be less than dialogue_ratio_max")
        if self.auto_rewrite_below > self.human_review_below:
            raise ValueError("auto_rewrite_below must not exceed human_review_below")
        return self


class Settings(BaseSettings):
    """Application settings, loaded from .env file.

    Nested values (publish_slots, quality) can be given as JSON in the
    environment, e.g. PUBLISH_SLOTS='[{"name": "noon", ...}]'.
    Temperature is not configurable in Agent SDK (guided via system_prompt).
    """

    # LLM Models
    llm_model_writing: str = "claude-opus-4-6"     # WriterAgent.write_chapter
    llm_model_rewriting: str = "claude-opus-4-6"   # WriterAgent.revise_chapter

    # Generation engine
    generation_timeout_seconds: float = 180.0
    generation_max_retries: int = 3
    generation_retry_delay: float = 1.0
    rate_limit_per_minute: int = 10
    rate_limit_burst: int = 10

    # Database
    sqlite_db_path: Path = Path("./data/factory.db")
    store_timeout_seconds: float = 30.0

    # Production
    factory_enabled: bool = True
    max_active_productions: int = 500
    activations_per_day: int = 20
    chapters_per_day_default: int = 20
    default_total_chapters: int = 1500
    chapters_per_arc: int = 200
    pause_after_errors: int = 3
    score_history_size: int = 10
    worker_concurrency: int = 4
    productions_per_tick: int = 50
    pending_jobs_per_tick: int = 20
    stale_claim_minutes: int = 60
    max_job_attempts: int = 3

    # Publishing
    reference_timezone: str = "Asia/Ho_Chi_Minh"
    publish_slots: list[PublishSlotConfig] = _default_slots()
    publish_max_retries: int = 3
    publish_batch_size: int = 100

    # Quality
    quality: QualityThresholds = QualityThresholds()
    quality_extended_mode: bool = False
    max_rewrite_attempts: int = 3
    min_score_improvement: float = 5.0
    rewrite_target_score: float = 70.0

    # Maintenance
    error_retention_days: int = 30
    error_auto_resolve_days: int = 7

    # Logging
    log_dir: Path = Path("./data/logs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("max_rewrite_attempts", "pause_after_errors", "worker_concurrency",
                     "generation_max_retries", "max_job_attempts")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("max_active_productions", "chapters_per_day_default", "chapters_per_arc",
                     "score_history_size", "default_total_chapters")
    @classmethod
    def validate_non_zero(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("reference_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown reference_timezone: {v}") from e
        return v

    @field_validator("publish_slots")
    @classmethod
    def validate_slots(cls, v: list[PublishSlotConfig]) -> list[PublishSlotConfig]:
        if not v:
            raise ValueError("publish_slots must contain at least one slot")
        names = [s.name for s in v]
        if len(set(names)) != len(names):
            raise ValueError(f"publish_slots names must be unique: {names}")
        ordered = sorted(v, key=lambda s: s.start_hour)
        for prev, cur in zip(ordered, ordered[1:]):
            if cur.start_hour < prev.end_hour:
                raise ValueError(f"publish_slots '{prev.name}' and '{cur.name}' overlap")
        return ordered

    @field_validator("sqlite_db_path", "log_dir")
    @classmethod
    def ensure_parent_dirs(cls, v: Path) -> Path:
        v.parent.mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def validate_rewrite_target(self) -> "Settings":
        if self.rewrite_target_score < self.quality.human_review_below:
            raise ValueError(
                f"rewrite_target_score ({self.rewrite_target_score}) must be >= "
                f"quality.human_review_below ({self.quality.human_review_below})"
            )
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.reference_timezone)

    def get_slot(self, name: str) -> PublishSlotConfig:
        for slot in self.publish_slots:
            if slot.name == name:
                return slot
        raise KeyError(name)


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (CLI entry points only).

    Raises:
        InvalidConfigError: An environment or .env value failed validation.
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = Settings()
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidConfigError(f"Invalid configuration: {problems}") from e
    return _settings_instance
