"""Text utilities: word counting, dialogue ratio, paragraph and sentence splitting."""

import re

_WORD_RE = re.compile(r"\S+")
# Straight or curly double quotes; dialogue never spans a paragraph break
_DIALOGUE_RE = re.compile(r"[\"“]([^\"“”\n]+?)[\"”]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def extract_dialogue(text: str) -> list[str]:
    """Return the inner text of every quoted dialogue line, in order."""
    return _DIALOGUE_RE.findall(text or "")


def extract_dialogue_ratio(text: str) -> float:
    """Share of characters that sit inside dialogue quotes (quotes included).

    Target band for serial fiction is roughly 10-60%.
    """
    if not text:
        return 0.0
    dialogue_chars = sum(len(m.group(0)) for m in _DIALOGUE_RE.finditer(text))
    return dialogue_chars / len(text)


def split_into_paragraphs(text: str) -> list[str]:
    """Split on blank lines; single newlines stay inside a paragraph."""
    paragraphs = re.split(r"\n\s*\n", text or "")
    return [p.strip() for p in paragraphs if p.strip()]


def average_paragraph_length(text: str) -> float:
    paragraphs = split_into_paragraphs(text)
    if not paragraphs:
        return 0.0
    return sum(len(p) for p in paragraphs) / len(paragraphs)


def split_sentences(text: str) -> list[str]:
    """Split on sentence-ending punctuation, keeping surrounding whitespace."""
    return _SENTENCE_SPLIT_RE.split(text or "")


def summarize_opening(content: str, max_chars: int = 300) -> str:
    """Cheap fallback summary: the first paragraph, truncated at a word boundary."""
    paragraphs = split_into_paragraphs(content)
    if not paragraphs:
        return ""
    first = paragraphs[0]
    if len(first) <= max_chars:
        return first
    cut = first[:max_chars].rsplit(" ", 1)[0]
    return cut + "..."
