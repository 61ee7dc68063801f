"""Conditional routing functions for the chapter job graph."""

from models.enums import QualityAction
from workflow.state import ChapterJobState


def route_after_claim(state: ChapterJobState) -> str:
    """Another worker holds the job or its production -> stop quietly."""
    if state.get("outcome") == "skipped":
        return "__end__"
    return "generate"


def route_after_generate(state: ChapterJobState) -> str:
    if state.get("error"):
        return "fail_job"
    return "evaluate"


def route_after_evaluate(state: ChapterJobState) -> str:
    """pass -> complete; empty content -> fail; anything else -> repair loop."""
    report = state.get("report")
    if report is None or report.action == QualityAction.FAIL:
        return "fail_job"
    if report.passed:
        return "complete_job"
    return "repair"


def route_after_repair(state: ChapterJobState) -> str:
    """Only a passing report completes the job; otherwise it fails for review."""
    report = state.get("report")
    if state.get("error") or report is None or not report.passed:
        return "fail_job"
    return "complete_job"
