"""Chapter and chapter write-job data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models.enums import ChapterJobStatus


@dataclass
class Chapter:
    """A produced installment; hidden from readers until published."""
    id: Optional[int] = None
    production_id: int = 0
    chapter_number: int = 0
    title: str = ""
    content: str = ""
    summary: str = ""
    word_count: int = 0
    quality_score: Optional[float] = None
    needs_review: bool = False
    is_visible: bool = False
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class ChapterWriteJob:
    """One scheduled attempt to generate a single chapter."""
    id: Optional[int] = None
    production_id: int = 0
    chapter_number: int = 0
    status: ChapterJobStatus = ChapterJobStatus.PENDING
    attempt_count: int = 0
    scheduled_slot: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    # Context snapshot taken at scheduling time
    previous_summary: str = ""
    objectives: list[str] = field(default_factory=list)
    target_intensity: float = 50.0
    arc_number: int = 1
    # Results
    chapter_id: Optional[int] = None
    word_count: int = 0
    final_score: Optional[float] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
