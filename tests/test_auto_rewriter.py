"""Tests for the bounded auto-repair loop."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.enums import QualityAction, QualityDimension, RewriteOutcome
from models.quality import QualityContext, QualityIssue, QualityReport, QualityScores


def _report(overall: int, issues=None) -> QualityReport:
    from config.settings import QualityThresholds
    from quality.gate import decide_action
    return QualityReport(
        scores=QualityScores(),
        overall=overall,
        action=decide_action(overall, 0, QualityThresholds()),
        issues=issues or [],
    )


def _gate(*overalls: int) -> MagicMock:
    gate = MagicMock()
    gate.evaluate.side_effect = [_report(o) for o in overalls]
    return gate


def _reviser(count: int) -> AsyncMock:
    return AsyncMock(side_effect=[
        {"title": f"Title v{i}", "content": f"content v{i}", "summary": f"summary v{i}"}
        for i in range(1, count + 1)
    ])


def _rewriter(gate, reviser, **kwargs):
    from quality.auto_rewriter import AutoRewriter
    return AutoRewriter(gate, reviser, **kwargs)


CONTEXT = QualityContext(chapter_number=12)


class TestRepairLoop:
    @pytest.mark.asyncio
    async def test_stops_when_improvement_too_small(self):
        reviser = _reviser(3)
        rewriter = _rewriter(_gate(52, 53), reviser, max_attempts=3, min_improvement=5)

        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)

        assert result.attempts == 2
        assert result.needs_human_review
        assert not result.success
        assert result.report.overall == 53
        assert result.content == "content v2"
        assert reviser.await_count == 2
        assert [a.outcome for a in result.history] == [RewriteOutcome.IMPROVED, RewriteOutcome.IMPROVED]

    @pytest.mark.asyncio
    async def test_first_attempt_never_stops_early(self):
        rewriter = _rewriter(_gate(46, 80), _reviser(2), max_attempts=3, min_improvement=5)
        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)
        assert result.success
        assert result.attempts == 2
        assert result.history[-1].outcome == RewriteOutcome.PASSED

    @pytest.mark.asyncio
    async def test_never_regresses_below_best(self):
        rewriter = _rewriter(_gate(40, 48, 44), _reviser(3), max_attempts=3, min_improvement=0)
        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)

        assert result.report.overall == 48
        assert result.content == "content v2"
        assert result.title == "Title v2"
        assert [a.accepted for a in result.history] == [False, True, False]
        assert result.needs_human_review

    @pytest.mark.asyncio
    async def test_revises_best_version_not_latest(self):
        reviser = _reviser(2)
        rewriter = _rewriter(_gate(30, 60), reviser, max_attempts=2, min_improvement=0)
        await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)
        # Attempt 1 scored lower, so attempt 2 still revises the original draft
        assert reviser.await_args_list[1].args[0] == "draft"

    @pytest.mark.asyncio
    async def test_already_passing_report_is_returned_untouched(self):
        reviser = _reviser(1)
        rewriter = _rewriter(_gate(), reviser)
        result = await rewriter.repair("draft", "Title", "summary", _report(90), CONTEXT)
        assert result.success
        assert result.attempts == 0
        reviser.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_passing_revision_succeeds(self):
        rewriter = _rewriter(_gate(72), _reviser(1), target_score=70)
        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)
        assert result.success
        assert result.summary == "summary v1"
        assert not result.needs_human_review

    @pytest.mark.asyncio
    async def test_target_score_without_pass_goes_to_review(self):
        held_back = QualityReport(scores=QualityScores(), overall=75, action=QualityAction.HUMAN_REVIEW)
        gate = MagicMock()
        gate.evaluate.return_value = held_back
        reviser = _reviser(3)
        rewriter = _rewriter(gate, reviser, max_attempts=3, target_score=70)

        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)

        assert not result.success
        assert result.needs_human_review
        assert "target score 70" in result.review_reason
        assert result.attempts == 1
        assert result.report.overall == 75
        assert result.history[0].outcome == RewriteOutcome.IMPROVED

    @pytest.mark.asyncio
    async def test_exhaustion_flags_for_review(self):
        rewriter = _rewriter(_gate(50, 56, 62), _reviser(3), max_attempts=3, min_improvement=5)
        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT)
        assert result.attempts == 3
        assert result.needs_human_review
        assert "after 3 attempts" in result.review_reason
        assert result.report.overall == 62

    @pytest.mark.asyncio
    async def test_engine_failure_is_recorded_and_loop_continues(self):
        from config.exceptions import LLMTimeoutError
        reviser = AsyncMock(side_effect=[
            LLMTimeoutError("slow"),
            {"title": "T", "content": "fixed", "summary": "S"},
        ])
        rewriter = _rewriter(_gate(75), reviser, max_attempts=3)
        result = await rewriter.repair("draft", "Title", "summary", _report(45), CONTEXT, job_id=7)

        assert result.success
        assert result.attempts == 2
        failed = result.history[0]
        assert failed.outcome == RewriteOutcome.REWRITE_FAILED
        assert failed.score_after is None
        assert failed.job_id == 7
        assert "slow" in failed.error_message

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            _rewriter(_gate(), _reviser(0), max_attempts=0)


class TestRevisionInstructions:
    def test_most_severe_dimension_first(self):
        from quality.auto_rewriter import build_revision_instructions
        report = _report(40, issues=[
            QualityIssue(QualityDimension.PACING, "Too little dialogue", "Add dialogue"),
            QualityIssue(QualityDimension.CONTINUITY, "Dead character appears", "Remove him"),
            QualityIssue(QualityDimension.REPETITION, "Tournament again", "Change the scene"),
        ])
        text = build_revision_instructions(report, 2)
        assert text.startswith("Revision pass 2. Current quality score: 40/100.")
        assert text.index("## Continuity") < text.index("## Repetition") < text.index("## Pacing")
        assert "- Dead character appears. Fix: Remove him" in text

    def test_no_issues_still_has_preservation_note(self):
        from quality.auto_rewriter import build_revision_instructions
        text = build_revision_instructions(_report(40), 1)
        assert "##" not in text
        assert "Keep the plot events" in text

    def test_report_action_is_auto_rewrite_below_fifty(self):
        assert _report(45).action == QualityAction.AUTO_REWRITE
