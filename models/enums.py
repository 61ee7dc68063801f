"""Enumerations for pipeline status tracking, with their legal transitions."""

from enum import Enum

from config.exceptions import InvalidTransitionError


class ProductionStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    WRITING = "writing"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"


class ChapterJobStatus(str, Enum):
    PENDING = "pending"
    WRITING = "writing"
    QUALITY_CHECK = "quality_check"
    REWRITING = "rewriting"
    COMPLETED = "completed"
    FAILED = "failed"


class PublishStatus(str, Enum):
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


class QualityAction(str, Enum):
    PASS = "pass"
    AUTO_REWRITE = "auto_rewrite"
    HUMAN_REVIEW = "human_review"
    FAIL = "fail"


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorStatus(str, Enum):
    NEW = "new"
    RESOLVED = "resolved"
    IGNORED = "ignored"


PRODUCTION_TRANSITIONS: dict[ProductionStatus, frozenset[ProductionStatus]] = {
    ProductionStatus.QUEUED: frozenset({ProductionStatus.ACTIVE, ProductionStatus.ERROR}),
    ProductionStatus.ACTIVE: frozenset({
        ProductionStatus.WRITING, ProductionStatus.PAUSED,
        ProductionStatus.FINISHED, ProductionStatus.ERROR,
    }),
    ProductionStatus.WRITING: frozenset({
        ProductionStatus.ACTIVE, ProductionStatus.PAUSED,
        ProductionStatus.FINISHED, ProductionStatus.ERROR,
    }),
    ProductionStatus.PAUSED: frozenset({ProductionStatus.ACTIVE, ProductionStatus.ERROR}),
    ProductionStatus.ERROR: frozenset({ProductionStatus.ACTIVE}),
    ProductionStatus.FINISHED: frozenset(),
}

CHAPTER_JOB_TRANSITIONS: dict[ChapterJobStatus, frozenset[ChapterJobStatus]] = {
    ChapterJobStatus.PENDING: frozenset({ChapterJobStatus.WRITING, ChapterJobStatus.FAILED}),
    # back-edges to PENDING are used only by stale-claim recovery
    ChapterJobStatus.WRITING: frozenset({
        ChapterJobStatus.QUALITY_CHECK, ChapterJobStatus.FAILED, ChapterJobStatus.PENDING,
    }),
    ChapterJobStatus.QUALITY_CHECK: frozenset({
        ChapterJobStatus.REWRITING, ChapterJobStatus.COMPLETED,
        ChapterJobStatus.FAILED, ChapterJobStatus.PENDING,
    }),
    ChapterJobStatus.REWRITING: frozenset({
        ChapterJobStatus.COMPLETED, ChapterJobStatus.FAILED, ChapterJobStatus.PENDING,
    }),
    ChapterJobStatus.COMPLETED: frozenset(),
    ChapterJobStatus.FAILED: frozenset(),
}

PUBLISH_TRANSITIONS: dict[PublishStatus, frozenset[PublishStatus]] = {
    PublishStatus.SCHEDULED: frozenset({PublishStatus.PUBLISHING}),
    # back-edge to SCHEDULED is used only by stale-claim recovery
    PublishStatus.PUBLISHING: frozenset({
        PublishStatus.PUBLISHED, PublishStatus.FAILED, PublishStatus.SCHEDULED,
    }),
    PublishStatus.FAILED: frozenset({PublishStatus.SCHEDULED}),
    PublishStatus.PUBLISHED: frozenset(),
}

_TABLES = {
    ProductionStatus: ("production", PRODUCTION_TRANSITIONS),
    ChapterJobStatus: ("chapter job", CHAPTER_JOB_TRANSITIONS),
    PublishStatus: ("publish job", PUBLISH_TRANSITIONS),
}


def can_transition(current: Enum, target: Enum) -> bool:
    _, table = _TABLES[type(current)]
    return target in table[current]


def ensure_transition(current: Enum, target: Enum) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is in the table."""
    entity, table = _TABLES[type(current)]
    if target not in table[current]:
        raise InvalidTransitionError(entity, current.value, target.value)


TERMINAL_JOB_STATUSES = frozenset({ChapterJobStatus.COMPLETED, ChapterJobStatus.FAILED})
OPEN_JOB_STATUSES = frozenset(set(ChapterJobStatus) - TERMINAL_JOB_STATUSES)
IN_FLIGHT_JOB_STATUSES = frozenset({
    ChapterJobStatus.WRITING, ChapterJobStatus.QUALITY_CHECK, ChapterJobStatus.REWRITING,
})


class QualityDimension(str, Enum):
    CONTINUITY = "continuity"
    REPETITION = "repetition"
    POWER = "power"
    NEW_INFO = "new_info"
    PACING = "pacing"
    DIALOGUE = "dialogue"
    CLICHE = "cliche"
    EXPOSITION = "exposition"


class RewriteOutcome(str, Enum):
    PASSED = "passed"
    IMPROVED = "improved"
    NO_IMPROVEMENT = "no_improvement"
    REWRITE_FAILED = "rewrite_failed"
