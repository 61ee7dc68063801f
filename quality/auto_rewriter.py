"""Auto-repair loop: bounded revise -> re-score iterations for a failing chapter."""

import logging
from typing import Awaitable, Callable, Optional

from config.exceptions import LLMError
from models.enums import QualityDimension, RewriteOutcome
from models.quality import QualityContext, QualityReport, RewriteAttempt, RewriteResult
from quality.gate import QualityGate
from tools.time_utils import utc_now

logger = logging.getLogger(__name__)

# (content, instructions, attempt) -> {"title", "content", "summary"}
Reviser = Callable[[str, str, int], Awaitable[dict]]

# Most severe first
_SEVERITY_ORDER = (
    (QualityDimension.CONTINUITY, "Continuity"),
    (QualityDimension.REPETITION, "Repetition"),
    (QualityDimension.POWER, "Power progression"),
    (QualityDimension.NEW_INFO, "Plot progression"),
    (QualityDimension.PACING, "Pacing"),
    (QualityDimension.DIALOGUE, "Dialogue"),
    (QualityDimension.CLICHE, "Clichés"),
    (QualityDimension.EXPOSITION, "Exposition"),
)


def build_revision_instructions(report: QualityReport, attempt: int) -> str:
    """Render the report's issues as revision instructions, most severe dimension first."""
    lines = [f"Revision pass {attempt}. Current quality score: {report.overall}/100."]
    for dimension, label in _SEVERITY_ORDER:
        issues = report.issues_for(dimension)
        if not issues:
            continue
        lines.append("")
        lines.append(f"## {label}")
        for issue in issues:
            lines.append(f"- {issue.message}. Fix: {issue.suggestion}")
    lines.append("")
    lines.append("Keep the plot events, characters and chapter ending unchanged.")
    lines.append("Fix only the problems listed above.")
    return "\n".join(lines)


class AutoRewriter:
    """Repairs a chapter through at most ``max_attempts`` engine revisions.

    The current best version only ever moves to a strictly higher overall
    score, so the returned chapter never scores below one seen earlier.
    """

    def __init__(
        self,
        gate: QualityGate,
        reviser: Reviser,
        max_attempts: int = 3,
        min_improvement: float = 5.0,
        target_score: float = 70.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.gate = gate
        self.reviser = reviser
        self.max_attempts = max_attempts
        self.min_improvement = min_improvement
        self.target_score = target_score

    async def repair(
        self,
        content: str,
        title: str,
        summary: str,
        report: QualityReport,
        context: QualityContext,
        job_id: Optional[int] = None,
    ) -> RewriteResult:
        if report.passed:
            return RewriteResult(
                success=True, content=content, title=title, summary=summary,
                report=report, attempts=0,
            )

        best_content, best_title, best_summary, best_report = content, title, summary, report
        history: list[RewriteAttempt] = []

        for attempt in range(1, self.max_attempts + 1):
            instructions = build_revision_instructions(best_report, attempt)
            previous_best = best_report.overall
            logger.info("Rewrite attempt %d/%d for ch.%d (best=%d)",
                        attempt, self.max_attempts, context.chapter_number, previous_best)

            try:
                revised = await self.reviser(best_content, instructions, attempt)
            except LLMError as e:
                logger.warning("Rewrite attempt %d failed: %s", attempt, e)
                history.append(RewriteAttempt(
                    job_id=job_id, attempt=attempt, score_before=previous_best,
                    outcome=RewriteOutcome.REWRITE_FAILED, instructions=instructions,
                    error_message=str(e), created_at=utc_now(),
                ))
                continue

            new_content = revised.get("content") or ""
            new_report = self.gate.evaluate(new_content, context)
            accepted = new_report.overall > previous_best
            if accepted:
                best_content = new_content
                best_title = revised.get("title") or best_title
                best_summary = revised.get("summary") or best_summary
                best_report = new_report

            passed = accepted and new_report.passed
            if passed:
                outcome = RewriteOutcome.PASSED
            elif accepted:
                outcome = RewriteOutcome.IMPROVED
            else:
                outcome = RewriteOutcome.NO_IMPROVEMENT
            history.append(RewriteAttempt(
                job_id=job_id, attempt=attempt, score_before=previous_best,
                score_after=new_report.overall, accepted=accepted, outcome=outcome,
                action=new_report.action, instructions=instructions, created_at=utc_now(),
            ))

            if passed:
                logger.info("Rewrite succeeded on attempt %d: %d -> %d",
                            attempt, previous_best, new_report.overall)
                return RewriteResult(
                    success=True, content=best_content, title=best_title,
                    summary=best_summary, report=best_report, attempts=attempt,
                    history=history,
                )

            # At the target score but still held back by a hard failure
            if accepted and new_report.overall >= self.target_score:
                reason = (
                    f"Reached target score {self.target_score:g} with {new_report.overall} "
                    f"on attempt {attempt}, but the gate still says '{new_report.action.value}'"
                )
                logger.info("Stopping rewrite: %s", reason)
                return RewriteResult(
                    success=False, content=best_content, title=best_title,
                    summary=best_summary, report=best_report, attempts=attempt,
                    history=history, needs_human_review=True, review_reason=reason,
                )

            improvement = new_report.overall - previous_best
            if attempt > 1 and improvement < self.min_improvement:
                reason = (
                    f"Improvement {improvement} on attempt {attempt} below minimum "
                    f"{self.min_improvement}; best score {best_report.overall}"
                )
                logger.info("Stopping rewrite early: %s", reason)
                return RewriteResult(
                    success=False, content=best_content, title=best_title,
                    summary=best_summary, report=best_report, attempts=attempt,
                    history=history, needs_human_review=True, review_reason=reason,
                )

        reason = (
            f"No passing revision after {self.max_attempts} attempts; "
            f"best score {best_report.overall}"
        )
        logger.info("Rewrite exhausted: %s", reason)
        return RewriteResult(
            success=False, content=best_content, title=best_title, summary=best_summary,
            report=best_report, attempts=self.max_attempts, history=history,
            needs_human_review=True, review_reason=reason,
        )
