"""LangGraph StateGraph: runs one chapter write job end to end.

claim_job -> generate -> evaluate -> [repair] -> complete_job | fail_job

Every status change is a conditional store update, so two workers racing
for the same job (or two jobs of the same production) cannot both proceed.
"""

import functools
import logging
from datetime import datetime
from typing import Optional

from langgraph.graph import StateGraph, END

from config.exceptions import ClaimConflictError, LLMError
from config.settings import Settings
from models.chapter import Chapter, ChapterWriteJob
from models.database import Database
from models.enums import (
    ChapterJobStatus, ErrorSeverity, IN_FLIGHT_JOB_STATUSES, ProductionStatus,
    TERMINAL_JOB_STATUSES,
)
from models.production import ProductionRecord
from models.quality import QualityContext, RecentChapter
from quality.auto_rewriter import AutoRewriter
from quality.gate import QualityGate
from tools.text_utils import count_words
from tools.time_utils import utc_now
from workflow.callbacks import LoggingCallback, WorkflowCallback
from workflow.conditions import (
    route_after_claim,
    route_after_evaluate,
    route_after_generate,
    route_after_repair,
)
from workflow.production_manager import ProductionManager
from workflow.publish_scheduler import PublishScheduler
from workflow.state import ChapterJobState

logger = logging.getLogger(__name__)

# claim, generate, evaluate, repair, complete/fail plus headroom
_RECURSION_LIMIT = 20


class ChapterPipeline:
    """Node implementations for the chapter job graph, with their dependencies injected.

    ``writer`` is anything with ``write_chapter(production, job)`` and
    ``revise_chapter(production, job, content, instructions, attempt)``
    coroutines returning the writer's chapter dict (see ``WriterAgent``).
    """

    def __init__(
        self,
        db: Database,
        settings: Settings,
        manager: ProductionManager,
        publisher: PublishScheduler,
        writer,
        gate: Optional[QualityGate] = None,
        callback: Optional[WorkflowCallback] = None,
    ):
        self.db = db
        self.settings = settings
        self.manager = manager
        self.publisher = publisher
        self.writer = writer
        self.gate = gate or QualityGate(settings.quality, settings.quality_extended_mode)
        self.callback = callback or LoggingCallback()
        self.app = build_job_graph(self)

    async def run_job(self, job_id: int) -> ChapterJobState:
        """Run one job through the graph and return the final state."""
        return await self.app.ainvoke(
            {"job_id": job_id}, config={"recursion_limit": _RECURSION_LIMIT},
        )

    # ---- Helpers ----

    def build_quality_context(
        self,
        production: ProductionRecord,
        job: ChapterWriteJob,
        realm_index: Optional[int] = None,
    ) -> QualityContext:
        recent = self.db.get_recent_chapters(
            production.id, job.chapter_number, self.settings.quality.repetition_window,
        )
        ctx = production.context
        # A job opening a new arc measures power deltas from the current realm
        arc_start = ctx.arc_start_realm_index if job.arc_number == ctx.arc_number else ctx.realm_index
        return QualityContext(
            chapter_number=job.chapter_number,
            recent_chapters=[RecentChapter(c.chapter_number, c.content) for c in recent],
            deceased_characters=list(ctx.deceased_characters),
            realm_index=realm_index if realm_index is not None else ctx.realm_index,
            arc_start_realm_index=arc_start,
        )

    def _publish_target(self, job: ChapterWriteJob, now: datetime) -> tuple[str, Optional[datetime]]:
        """Keep the job's planned slot time while it is still ahead, else the slot's next window."""
        slot_names = {s.name for s in self.settings.publish_slots}
        if job.scheduled_slot not in slot_names:
            return self.publisher.next_available_slot(now), None
        if (job.scheduled_time and job.scheduled_time > now
                and self.publisher.slot_for_time(job.scheduled_time) == job.scheduled_slot):
            return job.scheduled_slot, job.scheduled_time
        return job.scheduled_slot, None

    # ---- Nodes ----

    async def claim_job(self, state: ChapterJobState) -> dict:
        """Claim the production (active -> writing), then the job (pending -> writing)."""
        logger.debug("Entering node: claim_job")
        skipped = {"outcome": "skipped", "last_node": "claim_job"}
        job = self.db.get_write_job(state["job_id"])
        if job is None or job.status != ChapterJobStatus.PENDING:
            return skipped
        production = self.db.get_production(job.production_id)
        if production is None or production.status != ProductionStatus.ACTIVE:
            return skipped
        if not self.manager.begin_writing(production.id):
            return skipped
        if not self.db.claim_write_job(job.id):
            self.manager.release(production.id)
            return skipped

        self.callback.on_job_start(production.id, job.chapter_number)
        return {
            "job": self.db.get_write_job(job.id),
            "production": self.db.get_production(production.id),
            "last_node": "claim_job",
        }

    async def generate(self, state: ChapterJobState) -> dict:
        """Write the chapter draft through the writer agent."""
        logger.debug("Entering node: generate")
        job, production = state["job"], state["production"]
        try:
            draft = await self.writer.write_chapter(production, job)
        except LLMError as e:
            return {"error": f"Generation failed: {e}", "last_node": "generate"}

        if not self.db.transition_write_job(job.id, ChapterJobStatus.WRITING, ChapterJobStatus.QUALITY_CHECK):
            raise ClaimConflictError("chapter job", job.id, ChapterJobStatus.WRITING.value)
        return {
            "title": draft["title"],
            "content": draft["content"],
            "summary": draft["summary"],
            "word_count": draft["word_count"],
            "realm_index": draft.get("realm_index"),
            "deceased_characters": draft.get("deceased_characters", []),
            "last_node": "generate",
        }

    async def evaluate(self, state: ChapterJobState) -> dict:
        """Score the draft with the quality gate."""
        logger.debug("Entering node: evaluate")
        context = self.build_quality_context(state["production"], state["job"], state.get("realm_index"))
        report = self.gate.evaluate(state.get("content", ""), context)
        logger.info("Production %d ch.%d quality: %s",
                    state["production"].id, state["job"].chapter_number, report.summary())
        return {"report": report, "last_node": "evaluate"}

    async def repair(self, state: ChapterJobState) -> dict:
        """Run the bounded auto-repair loop and record every attempt."""
        logger.debug("Entering node: repair")
        job, production = state["job"], state["production"]
        if not self.db.transition_write_job(job.id, ChapterJobStatus.QUALITY_CHECK, ChapterJobStatus.REWRITING):
            raise ClaimConflictError("chapter job", job.id, ChapterJobStatus.QUALITY_CHECK.value)

        rewriter = AutoRewriter(
            self.gate,
            functools.partial(self.writer.revise_chapter, production, job),
            max_attempts=self.settings.max_rewrite_attempts,
            min_improvement=self.settings.min_score_improvement,
            target_score=self.settings.rewrite_target_score,
        )
        context = self.build_quality_context(production, job, state.get("realm_index"))
        result = await rewriter.repair(
            state["content"], state.get("title", ""), state.get("summary", ""),
            state["report"], context, job_id=job.id,
        )
        for attempt in result.history:
            self.db.add_rewrite_attempt(attempt)

        update = {
            "rewrite": result,
            "report": result.report,
            "title": result.title,
            "content": result.content,
            "summary": result.summary,
            "word_count": count_words(result.content),
            "last_node": "repair",
        }
        if not result.report.passed:
            update["error"] = result.review_reason or (
                f"Quality {result.report.overall} still not passing after repair "
                f"({result.report.action.value})"
            )
        return update

    async def complete_job(self, state: ChapterJobState) -> dict:
        """Persist the passing chapter, advance the production and schedule its release."""
        logger.debug("Entering node: complete_job")
        job, production, report = state["job"], state["production"], state["report"]
        now = utc_now()
        expected = ChapterJobStatus.REWRITING if state.get("rewrite") else ChapterJobStatus.QUALITY_CHECK

        chapter_id = self.db.save_chapter(Chapter(
            production_id=production.id,
            chapter_number=job.chapter_number,
            title=state.get("title", ""),
            content=state["content"],
            summary=state.get("summary", ""),
            word_count=state.get("word_count", 0),
            quality_score=report.overall,
            needs_review=False,
        ))
        slot, scheduled_time = self._publish_target(job, now)
        release = self.publisher.prepare_publish(
            production.id, chapter_id, job.chapter_number, slot, scheduled_time, now=now,
        )
        # Completion and the release row commit together or not at all
        publish_id = self.db.complete_write_job(
            job.id, expected, release, now=now,
            chapter_id=chapter_id, word_count=state.get("word_count", 0),
            final_score=report.overall, completed_at=now,
        )
        if publish_id is None:
            raise ClaimConflictError("chapter job", job.id, expected.value)
        logger.info("Scheduled publish of production %d ch.%d at %s (%s)",
                    production.id, job.chapter_number, release.scheduled_time.isoformat(), slot)

        self.manager.record_completion(
            production.id, job.chapter_number, state.get("summary", ""), report.overall,
            realm_index=state.get("realm_index"),
            deceased_characters=state.get("deceased_characters"),
            now=now,
        )

        self.callback.on_chapter_complete(production.id, job.chapter_number, report.overall)
        return {"outcome": "completed", "last_node": "complete_job"}

    async def fail_job(self, state: ChapterJobState) -> dict:
        """Fail the job, supersede later pending jobs and count the production failure."""
        logger.debug("Entering node: fail_job")
        job, production = state["job"], state["production"]
        report = state.get("report")
        message = state.get("error") or (
            f"Quality gate returned '{report.action.value}'" if report else "Chapter job failed"
        )

        fields = {"error_message": message[:2000]}
        if state.get("content"):
            # Keep the best version for human review; it is never published
            fields["chapter_id"] = self.db.save_chapter(Chapter(
                production_id=production.id,
                chapter_number=job.chapter_number,
                title=state.get("title", ""),
                content=state["content"],
                summary=state.get("summary", ""),
                word_count=state.get("word_count", 0),
                quality_score=report.overall if report else None,
                needs_review=True,
            ))
        if report is not None:
            fields["final_score"] = report.overall

        current = self.db.get_write_job(job.id)
        if current is not None and current.status not in TERMINAL_JOB_STATUSES:
            self.db.transition_write_job(job.id, current.status, ChapterJobStatus.FAILED, **fields)

        superseded = self.db.fail_later_pending_jobs(
            production.id, job.chapter_number,
            f"Superseded: chapter {job.chapter_number} failed",
        )
        if superseded:
            logger.info("Superseded %d later pending jobs of production %d", superseded, production.id)

        self.manager.record_failure(production.id, message)
        self.db.log_error(
            "chapter_failed", message, ErrorSeverity.ERROR,
            production_id=production.id, chapter_number=job.chapter_number,
        )
        self.callback.on_job_failed(production.id, job.chapter_number, message)
        return {"outcome": "failed", "error": message, "last_node": "fail_job"}

    def abort_job(self, job_id: int, message: str) -> Optional[ChapterWriteJob]:
        """Fail a job whose graph run raised and hand its production back.

        Returns the failed job, or None if it was no longer in flight.
        """
        job = self.db.get_write_job(job_id)
        if job is None or job.status not in IN_FLIGHT_JOB_STATUSES:
            return None
        if not self.db.transition_write_job(job.id, job.status, ChapterJobStatus.FAILED,
                                            error_message=message[:2000]):
            return None
        self.db.fail_later_pending_jobs(
            job.production_id, job.chapter_number,
            f"Superseded: chapter {job.chapter_number} failed",
        )
        self.manager.record_failure(job.production_id, message)
        self.callback.on_job_failed(job.production_id, job.chapter_number, message)
        return job


def build_job_graph(pipeline: ChapterPipeline):
    """Build and return the compiled chapter job graph bound to ``pipeline``."""
    graph = StateGraph(ChapterJobState)

    graph.add_node("claim_job", pipeline.claim_job)
    graph.add_node("generate", pipeline.generate)
    graph.add_node("evaluate", pipeline.evaluate)
    graph.add_node("repair", pipeline.repair)
    graph.add_node("complete_job", pipeline.complete_job)
    graph.add_node("fail_job", pipeline.fail_job)

    graph.set_entry_point("claim_job")

    graph.add_conditional_edges(
        "claim_job",
        route_after_claim,
        {"generate": "generate", "__end__": END},
    )
    graph.add_conditional_edges(
        "generate",
        route_after_generate,
        {"evaluate": "evaluate", "fail_job": "fail_job"},
    )
    graph.add_conditional_edges(
        "evaluate",
        route_after_evaluate,
        {"complete_job": "complete_job", "repair": "repair", "fail_job": "fail_job"},
    )
    graph.add_conditional_edges(
        "repair",
        route_after_repair,
        {"complete_job": "complete_job", "fail_job": "fail_job"},
    )

    graph.add_edge("complete_job", END)
    graph.add_edge("fail_job", END)

    return graph.compile()
