"""Publish job data model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models.enums import PublishStatus


@dataclass
class PublishJob:
    """A chapter awaiting release at a scheduled time inside a publish slot."""
    id: Optional[int] = None
    production_id: int = 0
    chapter_id: int = 0
    chapter_number: int = 0
    scheduled_time: Optional[datetime] = None
    slot: str = ""
    status: PublishStatus = PublishStatus.SCHEDULED
    retry_count: int = 0
    error_message: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
