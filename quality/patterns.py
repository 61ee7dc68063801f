"""Pattern taxonomies used by the quality gate and dialogue analyzer.

All patterns are case-insensitive and matched against raw chapter text.
"""

import re


def _compile(*patterns: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Narrative beats: recurring motifs a serial tends to overuse.
BEAT_PATTERNS: dict[str, tuple[re.Pattern, ...]] = {
    "humiliation": _compile(
        r"\bhumiliat\w*", r"\blooked down on\b", r"\bsneer\w*", r"\bscorn\w*",
        r"\bmock\w*", r"\bbelittl\w*", r"\bridicul\w*",
    ),
    "revenge": _compile(r"\brevenge\b", r"\bavenge\w*", r"\bvengeance\b", r"\bsettle the score\b", r"\bpay for\b"),
    "tournament": _compile(
        r"\btournament\b", r"\bcompetition\b", r"\barena\b", r"\bduel\w*",
        r"\bsparring\b", r"\bcontest\b", r"\bgrand assembly\b",
    ),
    "auction": _compile(r"\bauction\w*", r"\bbid\w*\b", r"\bhighest offer\b", r"\bpriced at\b"),
    "secret_realm": _compile(
        r"\bsecret realm\b", r"\bruins\b", r"\bancient tomb\b", r"\bexpedition\b",
        r"\bhidden cave\b", r"\brelic site\b",
    ),
    "sect_conflict": _compile(r"\bsects?\b", r"\bclan war\b", r"\brival (?:sect|clan|school)\b", r"\bfeud\b"),
    "treasure": _compile(
        r"\btreasure\b", r"\bspirit herb\b", r"\bartifact\b", r"\bspirit stones?\b",
        r"\bpill\b", r"\belixir\b", r"\bheavenly material\b",
    ),
    "breakthrough": _compile(r"\bbreakthrough\b", r"\bbroke through\b", r"\badvanced to\b", r"\bcomprehend\w*", r"\benlighten\w*"),
    "rescue": _compile(r"\brescu\w*", r"\bsaved (?:her|him|them)\b", r"\bstepped in\b", r"\bshield\w* (?:her|him|them)\b"),
    "hidden_identity": _compile(r"\bhidden identity\b", r"\bin disguise\b", r"\bdisguis\w*", r"\bconceal\w* (?:his|her) identity\b", r"\breveal\w* (?:his|her) true\b"),
}

# Forward-plot-movement categories (new-information score)
NEW_INFO_PATTERNS: dict[str, tuple[re.Pattern, ...]] = {
    "plot_advancement": _compile(
        r"\bdiscovered\b", r"\brealized that\b", r"\bthe secret (?:was|is)\b", r"\bturned out\b",
        r"\bso that was\b", r"\ba clue\b", r"\bfinally understood\b",
    ),
    "character_development": _compile(
        r"\bdecided\b", r"\bresolved to\b", r"\bchanged\b", r"\bgrew up\b",
        r"\bcame to understand\b", r"\blearned (?:a|his|her) lesson\b",
    ),
    "relationship_change": _compile(
        r"\bbecame friends\b", r"\bnew enemy\b", r"\ballian\w*", r"\bally\b",
        r"\bbetray\w*", r"\btrusted\b", r"\bsworn (?:brother|sister)\w*",
    ),
    "world_reveal": _compile(r"\blegend\w*", r"\bhistory of\b", r"\bthe origin\w*", r"\bthe truth (?:of|about|behind)\b", r"\bancient records\b"),
    "power_gain": _compile(r"\blearned\b", r"\bcomprehend\w*", r"\bbreakthrough\b", r"\bbroke through\b", r"\bobtained\b", r"\bgained\b"),
}

RECAP_PATTERNS = _compile(r"\bprevious(?:ly| chapter)\b", r"\blast time\b", r"\bthe day before\b", r"\bjust now\b", r"\bearlier\b")
TRANSITION_PATTERNS = _compile(r"\bafterwards?\b", r"\bafter that\b", r"\bnext\b", r"\bnot long after\b", r"\bmeanwhile\b", r"\bthe next (?:day|morning)\b")

BREAKTHROUGH_PATTERNS = _compile(r"\bbreakthrough\b", r"\bbroke through\b", r"\bascended to\b", r"\bentered the \w+ realm\b", r"\breached the \w+ (?:realm|stage)\b")
BUILDUP_PATTERNS = _compile(
    r"\baccumulat\w*", r"\bmonths of\b", r"\byears of\b", r"\bthe time was ripe\b",
    r"\bsolid foundation\b", r"\bafter (?:long|countless|endless) \w+", r"\bpainstaking\w*",
)
EFFORTLESS_GAIN_PATTERNS = _compile(r"\bsuddenly (?:gained|obtained|received)\b", r"\bout of nowhere\b", r"\bheaven[- ]sent\b", r"\bwithout any effort\b", r"\beffortlessly (?:gained|mastered)\b")

# Dialogue clichés
CLICHE_EXTREME = (
    "you dare", "courting death", "seeking death", "kneel before me", "know your place",
    "scram", "i will kill you", "you will regret this", "just you wait",
    "you don't know the height of heaven",
)
CLICHE_OVERUSED = (
    "unexpectedly", "as expected", "shocked", "dumbfounded", "jaw dropped",
    "unbelievable", "trash", "brat", "old man", "hmph", "cold smile", "sneered",
    "unrivaled", "invincible", "genius", "monstrous talent",
)

EXPOSITION_PATTERNS = (
    "as you know", "as everyone knows", "everyone knows", "according to legend",
    "it is said that", "they say that", "let me explain", "i'll tell you",
    "listen carefully",
)

STOCK_ANTAGONIST_DIALOGUE = (
    "do you know who i am", "my father is", "my sect", "how dare you touch me",
    "lowly", "you worthless",
)
STOCK_ANTAGONIST_ACTIONS = ("looked down his nose", "arrogant", "swaggered", "boasted", "bullied")


def any_match(patterns: tuple[re.Pattern, ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def detect_beats(content: str) -> list[str]:
    """Names of the beats present in ``content``, in taxonomy order."""
    return [name for name, patterns in BEAT_PATTERNS.items() if any_match(patterns, content)]
