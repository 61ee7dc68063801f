"""Models package: database, records, and enums."""

from models.database import Database
from models.production import ProductionContext, ProductionRecord, ScoreHistory, WorkPlan
from models.chapter import Chapter, ChapterWriteJob
from models.publish import PublishJob
from models.quality import (
    QualityContext,
    QualityIssue,
    QualityReport,
    QualityScores,
    RecentChapter,
    RewriteAttempt,
    RewriteResult,
)
from models.enums import (
    ProductionStatus,
    ChapterJobStatus,
    PublishStatus,
    QualityAction,
    QualityDimension,
    RewriteOutcome,
    ErrorSeverity,
    ErrorStatus,
    can_transition,
    ensure_transition,
)

__all__ = [
    "Database",
    "WorkPlan",
    "ProductionRecord",
    "ProductionContext",
    "ScoreHistory",
    "Chapter",
    "ChapterWriteJob",
    "PublishJob",
    "QualityContext",
    "QualityIssue",
    "QualityReport",
    "QualityScores",
    "RecentChapter",
    "RewriteAttempt",
    "RewriteResult",
    "ProductionStatus",
    "ChapterJobStatus",
    "PublishStatus",
    "QualityAction",
    "QualityDimension",
    "RewriteOutcome",
    "ErrorSeverity",
    "ErrorStatus",
    "can_transition",
    "ensure_transition",
]
