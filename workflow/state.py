"""LangGraph state for the per-job chapter pipeline."""

from typing import Optional, TypedDict

from models.chapter import ChapterWriteJob
from models.production import ProductionRecord
from models.quality import QualityReport, RewriteResult


class ChapterJobState(TypedDict, total=False):
    """State carried through claim -> generate -> evaluate -> (repair) -> complete/fail.

    Fields are grouped logically:
    - Identity: job_id, job, production
    - Draft: title, content, summary, word_count, realm_index, deceased_characters
    - Quality: report, rewrite
    - Control: outcome, error, last_node
    """

    # Identity
    job_id: int
    job: ChapterWriteJob
    production: ProductionRecord

    # Draft (latest accepted version)
    title: str
    content: str
    summary: str
    word_count: int
    realm_index: Optional[int]
    deceased_characters: list[str]

    # Quality
    report: QualityReport
    rewrite: RewriteResult

    # Control flow
    outcome: str  # "completed", "failed" or "skipped"
    error: str
    last_node: str
