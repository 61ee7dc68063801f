"""Dialogue analysis: clichés, exposition dumps, exclamation overuse, stock antagonists."""

import re
from dataclasses import dataclass, field

from quality.patterns import (
    CLICHE_EXTREME,
    CLICHE_OVERUSED,
    EXPOSITION_PATTERNS,
    STOCK_ANTAGONIST_ACTIONS,
    STOCK_ANTAGONIST_DIALOGUE,
)
from tools.text_utils import extract_dialogue

# Quoted lines this short are interjections, not dialogue worth analysing
_MIN_DIALOGUE_CHARS = 6
_LONG_SPEECH_CHARS = 150
_OVERUSE_ALLOWANCE = 2


def _phrase_count(phrase: str, text: str) -> int:
    return len(re.findall(r"\b" + re.escape(phrase) + r"\b", text))


@dataclass
class DialogueIssue:
    kind: str  # cliche | exposition | exclamation | stock_antagonist | voice
    severity: str  # minor | moderate | major
    description: str
    suggestion: str


@dataclass
class DialogueAnalysis:
    total_dialogues: int = 0
    extreme_cliches: dict[str, int] = field(default_factory=dict)
    overused_phrases: dict[str, int] = field(default_factory=dict)
    cliche_score: int = 0  # 0-100, higher = worse
    exposition_score: int = 0  # 0-100, higher = worse
    exclamation_ratio: int = 0  # % of lines
    question_ratio: int = 0  # % of lines
    vocabulary_diversity: int = 0  # % unique words
    stock_antagonist_count: int = 0
    quality_score: int = 100  # 0-100, higher = better
    issues: list[DialogueIssue] = field(default_factory=list)


class DialogueAnalyzer:
    """Scores the dialogue of one chapter. Stateless and deterministic."""

    def __init__(self, exclamation_max: int = 40, exposition_max: int = 30, stock_antagonist_max: int = 2):
        self.exclamation_max = exclamation_max
        self.exposition_max = exposition_max
        self.stock_antagonist_max = stock_antagonist_max

    def extract_dialogues(self, content: str) -> list[str]:
        return [d.strip() for d in extract_dialogue(content) if len(d.strip()) >= _MIN_DIALOGUE_CHARS]

    def analyze(self, content: str) -> DialogueAnalysis:
        dialogues = self.extract_dialogues(content)
        result = DialogueAnalysis(total_dialogues=len(dialogues))
        lower = content.lower()

        self._score_cliches(lower, result)
        result.exposition_score = self._exposition_score(dialogues)
        result.exclamation_ratio = self._ratio(dialogues, lambda d: d.endswith("!") or "!!" in d)
        result.question_ratio = self._ratio(dialogues, lambda d: "?" in d)
        result.vocabulary_diversity = self._vocabulary_diversity(dialogues)
        result.stock_antagonist_count = self._stock_antagonist_count(lower)

        if result.exposition_score > self.exposition_max:
            result.issues.append(DialogueIssue(
                "exposition",
                "major" if result.exposition_score > 50 else "moderate",
                f"Exposition dump detected ({result.exposition_score}% of dialogue explains)",
                "Reveal information through action and consequence instead of explanation",
            ))
        if result.exclamation_ratio > self.exclamation_max:
            result.issues.append(DialogueIssue(
                "exclamation",
                "major" if result.exclamation_ratio > 60 else "moderate",
                f"Too many exclamations ({result.exclamation_ratio}% of lines)",
                "Convey emotion through description rather than '!'",
            ))
        if result.stock_antagonist_count > self.stock_antagonist_max:
            result.issues.append(DialogueIssue(
                "stock_antagonist",
                "major" if result.stock_antagonist_count > 4 else "moderate",
                f"{result.stock_antagonist_count} stock arrogant-antagonist patterns",
                "Give the antagonist a motivation of their own",
            ))

        result.quality_score = self._quality_score(result)
        return result

    def _score_cliches(self, lower: str, result: DialogueAnalysis) -> None:
        score = 0
        for phrase in CLICHE_EXTREME:
            count = _phrase_count(phrase, lower)
            if not count:
                continue
            result.extreme_cliches[phrase] = count
            score += count * 15
            if count >= 2:
                result.issues.append(DialogueIssue(
                    "cliche", "major",
                    f'Cliché "{phrase}" appears {count} times',
                    f'Replace "{phrase}" with a reaction specific to this character',
                ))
        for phrase in CLICHE_OVERUSED:
            count = _phrase_count(phrase, lower)
            if count <= _OVERUSE_ALLOWANCE:
                continue
            result.overused_phrases[phrase] = count
            score += (count - _OVERUSE_ALLOWANCE) * 5
            if count > 4:
                result.issues.append(DialogueIssue(
                    "cliche", "moderate",
                    f'"{phrase}" repeated {count} times',
                    "Use a synonym or a concrete description",
                ))
        result.cliche_score = min(100, score)

    def _exposition_score(self, dialogues: list[str]) -> int:
        if not dialogues:
            return 0
        count = 0.0
        for line in dialogues:
            lower = line.lower()
            if any(p in lower for p in EXPOSITION_PATTERNS):
                count += 1
            if len(line) > _LONG_SPEECH_CHARS and "?" not in line:
                count += 0.5
        return min(100, round(count / len(dialogues) * 100))

    @staticmethod
    def _ratio(dialogues: list[str], predicate) -> int:
        if not dialogues:
            return 0
        return round(sum(1 for d in dialogues if predicate(d)) / len(dialogues) * 100)

    @staticmethod
    def _vocabulary_diversity(dialogues: list[str]) -> int:
        words = " ".join(dialogues).lower().split()
        if not words:
            return 0
        return round(len(set(words)) / len(words) * 100)

    @staticmethod
    def _stock_antagonist_count(lower: str) -> int:
        count = sum(1 for p in STOCK_ANTAGONIST_DIALOGUE if p in lower)
        count += sum(1 for p in STOCK_ANTAGONIST_ACTIONS if lower.count(p) > 1)
        return count

    def _quality_score(self, result: DialogueAnalysis) -> int:
        score = 100
        if result.exclamation_ratio > self.exclamation_max:
            score -= 30 if result.exclamation_ratio > 60 else 20
        if result.stock_antagonist_count > self.stock_antagonist_max:
            score -= 15
        if result.total_dialogues >= 5 and result.vocabulary_diversity < 40:
            score -= 10
            result.issues.append(DialogueIssue(
                "voice", "minor",
                f"Dialogue vocabulary is repetitive ({result.vocabulary_diversity}% unique words)",
                "Give each speaker distinct word choices",
            ))
        score -= min(30, result.cliche_score // 2)
        return max(0, score)
