"""Quality gate: a pure, deterministic multi-dimensional chapter scorer.

``evaluate(content, context)`` depends only on its arguments. The rolling
window of recent chapters is part of ``context`` so identical inputs always
yield an identical report.

Sub-scores (0-100):

- continuity: 100, -30 per deceased character present, -10 with no recap
  or transition marker at all.
- repetition (higher = worse): +15 per beat that already occurred in at
  least ``beat_repeat_threshold`` of the last ``repetition_window``
  chapters, and per significant phrase copied from the last
  ``phrase_window`` chapters.
- power sanity: 100, -40 for a realm jump above ``power_delta_max`` this
  arc, -20 for a breakthrough with no buildup, -15 for effortless gains.
- new information: 20 per forward-movement category present.
- pacing: word count band, dialogue ratio band, average paragraph length.

Only continuity, repetition and power sanity can hard-fail; new information
and pacing produce warnings.
"""

import logging
import math
import re
from typing import Optional

from config.settings import QualityThresholds
from models.enums import QualityAction, QualityDimension
from models.quality import (
    QualityContext,
    QualityIssue,
    QualityReport,
    QualityScores,
    RecentChapter,
)
from quality.dialogue_analyzer import DialogueAnalyzer
from quality.patterns import (
    BREAKTHROUGH_PATTERNS,
    BUILDUP_PATTERNS,
    EFFORTLESS_GAIN_PATTERNS,
    NEW_INFO_PATTERNS,
    RECAP_PATTERNS,
    TRANSITION_PATTERNS,
    any_match,
    detect_beats,
)
from tools.text_utils import (
    average_paragraph_length,
    count_words,
    extract_dialogue_ratio,
    split_sentences,
)

logger = logging.getLogger(__name__)

STANDARD_WEIGHTS = {
    "continuity": 0.30,
    "repetition": 0.20,
    "power_sanity": 0.20,
    "new_info": 0.15,
    "pacing": 0.15,
}

EXTENDED_WEIGHTS = {
    "continuity": 0.25,
    "repetition": 0.15,
    "power_sanity": 0.15,
    "new_info": 0.10,
    "pacing": 0.10,
    "dialogue": 0.10,
    "cliche": 0.10,
    "exposition": 0.05,
}

# Scores where higher means worse; inverted before weighting
_INVERTED = frozenset({"repetition", "cliche", "exposition"})

_DEAD_CHARACTER_PENALTY = 30
_NO_TRANSITION_PENALTY = 10
_REPETITION_UNIT = 15
_POWER_JUMP_PENALTY = 40
_NO_BUILDUP_PENALTY = 20
_EFFORTLESS_PENALTY = 15
_NEW_INFO_UNIT = 20
_PACING_WARNING_BELOW = 70

_QUOTED_PHRASE_RE = re.compile(r"\"[^\"]{20,100}\"")
_MAX_PHRASES = 5


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _window(context: QualityContext, size: int) -> list[RecentChapter]:
    """Recent chapters in [chapter - size, chapter), newest first."""
    ch = context.chapter_number
    recent = [r for r in context.recent_chapters if ch - size <= r.number < ch]
    return sorted(recent, key=lambda r: r.number, reverse=True)


def _significant_phrases(content: str) -> list[str]:
    phrases = _QUOTED_PHRASE_RE.findall(content)[:_MAX_PHRASES]
    sentences = [s.strip() for s in split_sentences(content)]
    phrases.extend([s for s in sentences if 30 < len(s) < 100][:_MAX_PHRASES])
    return phrases


def check_continuity(content: str, context: QualityContext) -> tuple[float, list[QualityIssue]]:
    score = 100
    issues = []
    for name in context.deceased_characters:
        if name and re.search(r"\b" + re.escape(name) + r"\b", content, re.IGNORECASE):
            score -= _DEAD_CHARACTER_PENALTY
            issues.append(QualityIssue(
                QualityDimension.CONTINUITY,
                f'Deceased character "{name}" appears in the chapter',
                f"Remove {name} or make the appearance an explicit memory or flashback",
            ))
    if not any_match(RECAP_PATTERNS, content) and not any_match(TRANSITION_PATTERNS, content):
        score -= _NO_TRANSITION_PENALTY
        issues.append(QualityIssue(
            QualityDimension.CONTINUITY,
            "No transition or recap from the previous chapter",
            "Open with a short bridge from where the previous chapter ended",
        ))
    return max(0, score), issues


def check_repetition(
    content: str,
    context: QualityContext,
    thresholds: QualityThresholds,
) -> tuple[float, list[QualityIssue]]:
    recent = _window(context, thresholds.repetition_window)
    issues = []
    count = 0

    recent_beats = [set(detect_beats(r.content)) for r in recent]
    for beat in detect_beats(content):
        occurrences = sum(1 for beats in recent_beats if beat in beats)
        if occurrences >= thresholds.beat_repeat_threshold:
            count += 1
            issues.append(QualityIssue(
                QualityDimension.REPETITION,
                f'"{beat}" beat appeared in {occurrences} of the last '
                f"{thresholds.repetition_window} chapters",
                f"Replace the {beat.replace('_', ' ')} beat with a different kind of scene",
            ))

    phrase_sources = recent[: thresholds.phrase_window]
    for phrase in _significant_phrases(content):
        if any(phrase in r.content for r in phrase_sources):
            count += 1
            issues.append(QualityIssue(
                QualityDimension.REPETITION,
                f'Repeated phrase: "{phrase[:50]}..."',
                "Rephrase this passage; it is copied from a recent chapter",
            ))

    return min(100, count * _REPETITION_UNIT), issues


def check_power_sanity(
    content: str,
    context: QualityContext,
    thresholds: QualityThresholds,
) -> tuple[float, list[QualityIssue]]:
    score = 100
    issues = []
    if any_match(BREAKTHROUGH_PATTERNS, content):
        if context.realm_index is not None and context.arc_start_realm_index is not None:
            delta = context.realm_index - context.arc_start_realm_index
            if delta > thresholds.power_delta_max:
                score -= _POWER_JUMP_PENALTY
                issues.append(QualityIssue(
                    QualityDimension.POWER,
                    f"Power jumped {delta} realms this arc (max {thresholds.power_delta_max})",
                    "Hold the breakthrough back or spread it over later arcs",
                ))
        if not any_match(BUILDUP_PATTERNS, content):
            score -= _NO_BUILDUP_PENALTY
            issues.append(QualityIssue(
                QualityDimension.POWER,
                "Breakthrough without proper buildup",
                "Show the training, accumulation or cost that makes the breakthrough earned",
            ))
    if any_match(EFFORTLESS_GAIN_PATTERNS, content):
        score -= _EFFORTLESS_PENALTY
        issues.append(QualityIssue(
            QualityDimension.POWER,
            "Power gain appears too easy or convenient",
            "Attach a price, risk or effort to the gain",
        ))
    return max(0, score), issues


def check_new_info(content: str, thresholds: QualityThresholds) -> tuple[float, int, list[QualityIssue]]:
    missing = []
    count = 0
    for category, patterns in NEW_INFO_PATTERNS.items():
        if any_match(patterns, content):
            count += 1
        else:
            missing.append(category)
    issues = []
    if count < thresholds.new_info_min:
        issues.append(QualityIssue(
            QualityDimension.NEW_INFO,
            f"Only {count} forward-movement categories present (minimum {thresholds.new_info_min})",
            f"Add at least {thresholds.new_info_min - count} of: "
            + ", ".join(m.replace("_", " ") for m in missing),
        ))
    return min(100, count * _NEW_INFO_UNIT), count, issues


def check_pacing(content: str, thresholds: QualityThresholds) -> tuple[float, list[QualityIssue]]:
    score = 100
    issues = []

    words = count_words(content)
    if words < thresholds.word_count_min:
        score -= 20
        issues.append(QualityIssue(
            QualityDimension.PACING,
            f"Word count {words} below minimum {thresholds.word_count_min}",
            "Expand scenes with action and sensory detail rather than summary",
        ))
    if words > thresholds.word_count_max:
        score -= 10
        issues.append(QualityIssue(
            QualityDimension.PACING,
            f"Word count {words} above maximum {thresholds.word_count_max}",
            "Cut digressions and merge redundant scenes",
        ))

    ratio = extract_dialogue_ratio(content)
    if ratio < thresholds.dialogue_ratio_min:
        score -= 15
        issues.append(QualityIssue(
            QualityDimension.PACING,
            f"Too little dialogue ({ratio:.0%} < {thresholds.dialogue_ratio_min:.0%})",
            "Turn some narrated exchanges into spoken dialogue",
        ))
    if ratio > thresholds.dialogue_ratio_max:
        score -= 15
        issues.append(QualityIssue(
            QualityDimension.PACING,
            f"Too much dialogue ({ratio:.0%} > {thresholds.dialogue_ratio_max:.0%})",
            "Ground the conversation with action beats and description",
        ))

    avg = average_paragraph_length(content)
    if avg > thresholds.paragraph_avg_max:
        score -= 10
        issues.append(QualityIssue(
            QualityDimension.PACING,
            "Paragraphs too long on average",
            "Break long paragraphs at shifts of action or speaker",
        ))
    if avg < thresholds.paragraph_avg_min:
        score -= 10
        issues.append(QualityIssue(
            QualityDimension.PACING,
            "Paragraphs too short on average",
            "Combine fragmentary paragraphs into fuller beats",
        ))

    return max(0, score), issues


def decide_action(overall: int, hard_failures: int, thresholds: QualityThresholds) -> QualityAction:
    if overall < thresholds.auto_rewrite_below or hard_failures >= 2:
        return QualityAction.AUTO_REWRITE
    if overall < thresholds.human_review_below or hard_failures > 0:
        return QualityAction.HUMAN_REVIEW
    return QualityAction.PASS


def weighted_overall(scores: QualityScores, extended: bool) -> int:
    weights = EXTENDED_WEIGHTS if extended else STANDARD_WEIGHTS
    total = 0.0
    for name, weight in weights.items():
        value = getattr(scores, name)
        total += weight * ((100 - value) if name in _INVERTED else value)
    return _round_half_up(total)


def evaluate(
    content: str,
    context: QualityContext,
    thresholds: Optional[QualityThresholds] = None,
    extended: bool = False,
) -> QualityReport:
    """Score ``content`` and classify it as pass / auto_rewrite / human_review / fail.

    Empty content is a generation failure, not a quality problem: it gets
    ``action = fail`` and is never sent to the repair loop.
    """
    thresholds = thresholds or QualityThresholds()

    if not content or not content.strip():
        return QualityReport(
            scores=QualityScores(continuity=0, repetition=100, power_sanity=0, pacing=0),
            overall=0,
            action=QualityAction.FAIL,
            issues=[QualityIssue(
                QualityDimension.PACING, "Chapter content is empty",
                "Regenerate the chapter",
            )],
        )

    scores = QualityScores()
    issues: list[QualityIssue] = []
    failures: list[QualityDimension] = []
    warnings: list[str] = []

    scores.continuity, found = check_continuity(content, context)
    issues.extend(found)
    if scores.continuity < thresholds.continuity_min:
        failures.append(QualityDimension.CONTINUITY)

    scores.repetition, found = check_repetition(content, context, thresholds)
    issues.extend(found)
    if scores.repetition > thresholds.repetition_max:
        failures.append(QualityDimension.REPETITION)

    scores.power_sanity, found = check_power_sanity(content, context, thresholds)
    issues.extend(found)
    if scores.power_sanity < thresholds.power_sanity_min:
        failures.append(QualityDimension.POWER)

    scores.new_info, scores.new_info_count, found = check_new_info(content, thresholds)
    issues.extend(found)
    if scores.new_info_count < thresholds.new_info_min:
        warnings.append(
            f"Only {scores.new_info_count} new info points (minimum {thresholds.new_info_min})"
        )

    scores.pacing, found = check_pacing(content, thresholds)
    issues.extend(found)
    if scores.pacing < _PACING_WARNING_BELOW:
        warnings.append("Pacing issues detected")

    if extended:
        analysis = DialogueAnalyzer(exposition_max=int(thresholds.exposition_max)).analyze(content)
        scores.dialogue = analysis.quality_score
        scores.cliche = analysis.cliche_score
        scores.exposition = analysis.exposition_score
        for item in analysis.issues:
            if item.kind == "cliche":
                dimension = QualityDimension.CLICHE
            elif item.kind == "exposition":
                dimension = QualityDimension.EXPOSITION
            else:
                dimension = QualityDimension.DIALOGUE
            issues.append(QualityIssue(dimension, item.description, item.suggestion))
        if scores.dialogue < thresholds.dialogue_quality_min:
            warnings.append(f"Dialogue quality {scores.dialogue} below {thresholds.dialogue_quality_min}")
        if scores.cliche > thresholds.cliche_max:
            warnings.append(f"Cliché score {scores.cliche} above {thresholds.cliche_max}")
        if scores.exposition > thresholds.exposition_max:
            warnings.append(f"Exposition score {scores.exposition} above {thresholds.exposition_max}")

    overall = weighted_overall(scores, extended)
    action = decide_action(overall, len(failures), thresholds)

    return QualityReport(
        scores=scores,
        overall=overall,
        action=action,
        issues=issues,
        failures=failures,
        warnings=warnings,
    )


class QualityGate:
    """Binds thresholds and mode so callers can inject a configured gate."""

    def __init__(self, thresholds: Optional[QualityThresholds] = None, extended: bool = False):
        self.thresholds = thresholds or QualityThresholds()
        self.extended = extended

    def evaluate(self, content: str, context: QualityContext) -> QualityReport:
        report = evaluate(content, context, self.thresholds, self.extended)
        logger.debug("Quality gate ch.%d: %s", context.chapter_number, report.summary())
        return report
