"""Quality package: chapter scoring gate, dialogue analysis and the repair loop."""

from quality.gate import QualityGate, evaluate
from quality.dialogue_analyzer import DialogueAnalysis, DialogueAnalyzer
from quality.auto_rewriter import AutoRewriter, build_revision_instructions

__all__ = [
    "QualityGate",
    "evaluate",
    "DialogueAnalyzer",
    "DialogueAnalysis",
    "AutoRewriter",
    "build_revision_instructions",
]
