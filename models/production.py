"""Production data model: one work moving through the pipeline."""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from models.enums import ProductionStatus


@dataclass
class WorkPlan:
    """An accepted work plan, as handed to ``ProductionManager.admit``."""
    title: str
    genre: str = ""
    premise: str = ""
    persona: str = ""
    total_chapters: Optional[int] = None  # None = open-ended
    chapters_per_day: Optional[int] = None  # None = settings default
    priority: int = 0
    objectives: list[str] = field(default_factory=list)


@dataclass
class ScoreHistory:
    """Bounded window of the most recent quality scores."""
    capacity: int = 10
    scores: list[float] = field(default_factory=list)

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("ScoreHistory capacity must be >= 1")
        self._trim()

    def _trim(self):
        if len(self.scores) > self.capacity:
            del self.scores[: len(self.scores) - self.capacity]

    def append(self, score: float) -> None:
        self.scores.append(float(score))
        self._trim()

    @property
    def average(self) -> Optional[float]:
        if not self.scores:
            return None
        return round(sum(self.scores) / len(self.scores), 2)

    def to_json(self) -> str:
        return json.dumps({"capacity": self.capacity, "scores": self.scores})

    @classmethod
    def from_json(cls, raw: Optional[str], capacity: int = 10) -> "ScoreHistory":
        if not raw:
            return cls(capacity=capacity)
        data = json.loads(raw)
        return cls(capacity=capacity, scores=[float(s) for s in data.get("scores", [])])


@dataclass
class ProductionContext:
    """Structured story state carried forward between chapters."""
    objectives: list[str] = field(default_factory=list)
    deceased_characters: list[str] = field(default_factory=list)
    realm_index: Optional[int] = None
    arc_number: int = 1
    arc_start_realm_index: Optional[int] = None

    def to_json(self) -> str:
        return json.dumps({
            "objectives": self.objectives,
            "deceased_characters": self.deceased_characters,
            "realm_index": self.realm_index,
            "arc_number": self.arc_number,
            "arc_start_realm_index": self.arc_start_realm_index,
        }, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ProductionContext":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            objectives=list(data.get("objectives") or []),
            deceased_characters=list(data.get("deceased_characters") or []),
            realm_index=data.get("realm_index"),
            arc_number=int(data.get("arc_number") or 1),
            arc_start_realm_index=data.get("arc_start_realm_index"),
        )


@dataclass
class ProductionRecord:
    """Represents one work in the pipeline and its daily quota state."""
    id: Optional[int] = None
    title: str = ""
    genre: str = ""
    premise: str = ""
    persona: str = ""
    status: ProductionStatus = ProductionStatus.QUEUED
    priority: int = 0
    current_chapter: int = 0
    total_chapters: Optional[int] = None
    chapters_per_day: int = 20
    last_write_date: Optional[date] = None
    chapters_written_today: int = 0
    running_summary: str = ""
    context: ProductionContext = field(default_factory=ProductionContext)
    score_history: ScoreHistory = field(default_factory=ScoreHistory)
    consecutive_error_count: int = 0
    queued_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    pause_reason: Optional[str] = None
    finished_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def average_score(self) -> Optional[float]:
        return self.score_history.average

    @property
    def is_complete(self) -> bool:
        return self.total_chapters is not None and self.current_chapter >= self.total_chapters

    def chapters_needed(self, today: date) -> int:
        """Remaining quota for ``today`` (reference-timezone date)."""
        if self.last_write_date != today:
            return self.chapters_per_day
        return self.chapters_per_day - self.chapters_written_today
