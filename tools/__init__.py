"""Tools package: Agent SDK client, rate limiting, text and time utilities."""

from tools.agent_sdk_client import AgentSDKClient, GenerationResult, SamplingParams
from tools.llm_client import parse_json_response
from tools.rate_limiter import TokenBucket
from tools.text_utils import (
    count_words,
    extract_dialogue,
    extract_dialogue_ratio,
    split_into_paragraphs,
    average_paragraph_length,
    split_sentences,
    summarize_opening,
)

__all__ = [
    "AgentSDKClient",
    "GenerationResult",
    "SamplingParams",
    "TokenBucket",
    "parse_json_response",
    "count_words",
    "extract_dialogue",
    "extract_dialogue_ratio",
    "split_into_paragraphs",
    "average_paragraph_length",
    "split_sentences",
    "summarize_opening",
]
