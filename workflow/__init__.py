"""Workflow package: production state machine, schedulers, job graph and tick driver."""

from workflow.callbacks import LoggingCallback, RichTickCallback, WorkflowCallback
from workflow.chapter_scheduler import ChapterScheduler, SchedulingResult, distribute_slots, tension_target
from workflow.conditions import (
    route_after_claim,
    route_after_evaluate,
    route_after_generate,
    route_after_repair,
)
from workflow.graph import ChapterPipeline, build_job_graph
from workflow.orchestrator import DailyTickResult, MainTickResult, Orchestrator
from workflow.production_manager import ProductionManager, arc_number_for
from workflow.publish_scheduler import PublishPassResult, PublishScheduler
from workflow.state import ChapterJobState

__all__ = [
    "ChapterJobState",
    "ChapterPipeline",
    "ChapterScheduler",
    "DailyTickResult",
    "LoggingCallback",
    "MainTickResult",
    "Orchestrator",
    "ProductionManager",
    "PublishPassResult",
    "PublishScheduler",
    "RichTickCallback",
    "SchedulingResult",
    "WorkflowCallback",
    "arc_number_for",
    "build_job_graph",
    "distribute_slots",
    "route_after_claim",
    "route_after_evaluate",
    "route_after_generate",
    "route_after_repair",
    "tension_target",
]
