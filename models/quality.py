"""Quality gate value objects and rewrite audit records."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models.enums import QualityAction, QualityDimension, RewriteOutcome


@dataclass(frozen=True)
class RecentChapter:
    """A previously written chapter, used as the repetition window."""
    number: int
    content: str


@dataclass
class QualityContext:
    """Everything the gate needs besides the content itself."""
    chapter_number: int = 1
    recent_chapters: list[RecentChapter] = field(default_factory=list)
    deceased_characters: list[str] = field(default_factory=list)
    realm_index: Optional[int] = None
    arc_start_realm_index: Optional[int] = None


@dataclass(frozen=True)
class QualityIssue:
    """One threshold breach with an actionable fix."""
    dimension: QualityDimension
    message: str
    suggestion: str


@dataclass
class QualityScores:
    continuity: float = 100
    repetition: float = 0  # higher = worse
    power_sanity: float = 100
    new_info: float = 0
    new_info_count: int = 0
    pacing: float = 100
    # Extended mode only
    dialogue: Optional[float] = None
    cliche: Optional[float] = None  # higher = worse
    exposition: Optional[float] = None  # higher = worse


@dataclass
class QualityReport:
    scores: QualityScores
    overall: int
    action: QualityAction
    issues: list[QualityIssue] = field(default_factory=list)
    failures: list[QualityDimension] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.action == QualityAction.PASS

    @property
    def suggestions(self) -> list[str]:
        return [i.suggestion for i in self.issues]

    def issues_for(self, dimension: QualityDimension) -> list[QualityIssue]:
        return [i for i in self.issues if i.dimension == dimension]

    def summary(self) -> str:
        parts = [f"overall={self.overall}", f"action={self.action.value}"]
        if self.failures:
            parts.append("failed=" + ",".join(d.value for d in self.failures))
        return " ".join(parts)


@dataclass
class RewriteAttempt:
    """One iteration of the repair loop (append-only audit row)."""
    id: Optional[int] = None
    job_id: Optional[int] = None
    attempt: int = 0
    score_before: float = 0
    score_after: Optional[float] = None
    accepted: bool = False
    outcome: RewriteOutcome = RewriteOutcome.NO_IMPROVEMENT
    action: Optional[QualityAction] = None
    instructions: str = ""
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class RewriteResult:
    success: bool
    content: str
    title: str
    summary: str
    report: QualityReport
    attempts: int
    history: list[RewriteAttempt] = field(default_factory=list)
    needs_human_review: bool = False
    review_reason: Optional[str] = None

    @property
    def final_score(self) -> int:
        return self.report.overall
