"""Claude Agent SDK wrapper: the pipeline's generation engine."""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

from claude_agent_sdk import (
    query,
    ClaudeAgentOptions,
    ResultMessage,
    AssistantMessage,
)

from config.settings import Settings
from config.exceptions import (
    LLMError,
    LLMBlockedError,
    LLMRateLimitError,
    LLMRetryExhaustedError,
    LLMTimeoutError,
)
from tools.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

# Allow launching Agent SDK even when running inside a Claude Code session.
# The SDK checks for this env var and refuses to start if set.
os.environ.pop("CLAUDECODE", None)

_RATE_LIMIT_RE = re.compile(r"rate.?limit|429|overloaded|too many requests|quota", re.IGNORECASE)
_BLOCKED_RE = re.compile(r"safety|blocked|refus|content.?polic|prohibited", re.IGNORECASE)
_TIMEOUT_RE = re.compile(r"time.?out|timed out|deadline", re.IGNORECASE)
_RETRY_AFTER_RE = re.compile(r"retry.?after\D{0,5}(\d+(?:\.\d+)?)", re.IGNORECASE)


@dataclass
class SamplingParams:
    """Engine knobs. The Agent SDK exposes no temperature; tone goes in the persona."""
    model: Optional[str] = None
    max_turns: int = 1


@dataclass
class GenerationResult:
    text: str
    model: str
    usage: dict = field(default_factory=dict)  # input_tokens, output_tokens, cost_usd


def classify_error(exc: Exception) -> LLMError:
    """Map an arbitrary SDK failure onto the retryable/blocked taxonomy."""
    if isinstance(exc, LLMError) and type(exc) is not LLMError:
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return LLMTimeoutError("Generation timed out")
    text = str(exc)
    if _BLOCKED_RE.search(text):
        return LLMBlockedError(reason=text[:200])
    if _RATE_LIMIT_RE.search(text):
        match = _RETRY_AFTER_RE.search(text)
        return LLMRateLimitError(retry_after=float(match.group(1)) if match else None)
    if _TIMEOUT_RE.search(text):
        return LLMTimeoutError(f"Generation timed out: {text[:200]}")
    return LLMError(f"Agent SDK query failed: {exc}")


class AgentSDKClient:
    """Claude Agent SDK wrapper with timeout, rate limiting and retry policy.

    Uses claude_agent_sdk.query() for all LLM interactions.
    Authentication is handled automatically by Claude Code CLI.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        limiter: Optional[TokenBucket] = None,
    ):
        self.settings = settings or Settings()
        self.limiter = limiter or TokenBucket(
            tokens_per_interval=self.settings.rate_limit_per_minute,
            interval_seconds=60.0,
            max_tokens=self.settings.rate_limit_burst,
        )
        self.total_calls = 0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_cost_usd = 0.0

    async def _query(self, prompt: str, persona: str, model: str, max_turns: int) -> GenerationResult:
        result_text = ""
        usage: dict = {}
        # IMPORTANT: Do NOT return/break early from inside the async for loop.
        # The query() generator uses anyio cancel scopes internally; exiting
        # the loop prematurely causes "Attempted to exit cancel scope in a
        # different task" errors. We must exhaust the generator fully.
        async for message in query(
            prompt=prompt,
            options=ClaudeAgentOptions(system_prompt=persona, model=model, max_turns=max_turns),
        ):
            if isinstance(message, ResultMessage):
                if message.is_error:
                    raise LLMError(f"Agent SDK returned an error result: {message.result}")
                result_text = message.result or result_text
                raw_usage = message.usage or {}
                usage = {
                    "input_tokens": raw_usage.get("input_tokens", 0),
                    "output_tokens": raw_usage.get("output_tokens", 0),
                    "cost_usd": message.total_cost_usd or 0.0,
                }
            elif isinstance(message, AssistantMessage) and not result_text:
                parts = [block.text for block in message.content if getattr(block, "text", None)]
                if parts:
                    result_text = "".join(parts)
        return GenerationResult(text=result_text, model=model, usage=usage)

    async def generate(
        self,
        prompt: str,
        persona: str = "",
        sampling: Optional[SamplingParams] = None,
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Single engine call: wait for a rate-limit permit, then query with a timeout.

        Raises:
            LLMRateLimitError, LLMTimeoutError: retryable failures.
            LLMBlockedError: safety refusal, never retried.
            LLMError: anything else.
        """
        sampling = sampling or SamplingParams()
        model = sampling.model or self.settings.llm_model_writing
        timeout = timeout or self.settings.generation_timeout_seconds

        await self.limiter.acquire()
        self.total_calls += 1
        logger.debug("AgentSDK call: model=%s, max_turns=%d, timeout=%.0fs",
                     model, sampling.max_turns, timeout)

        try:
            result = await asyncio.wait_for(
                self._query(prompt, persona, model, sampling.max_turns), timeout=timeout,
            )
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, LLMRateLimitError):
                self.limiter.penalize(error.retry_after)
            logger.warning("AgentSDK call failed (%s): %s", type(error).__name__, error)
            if error is e:
                raise
            raise error from e

        if not result.text:
            raise LLMError("Agent SDK returned no content", {"model": model})

        self.total_input_tokens += result.usage.get("input_tokens", 0)
        self.total_output_tokens += result.usage.get("output_tokens", 0)
        self.total_cost_usd += result.usage.get("cost_usd", 0.0)
        logger.debug("AgentSDK result: %d chars, usage=%s", len(result.text), result.usage)
        return result

    async def generate_with_retry(
        self,
        prompt: str,
        persona: str = "",
        sampling: Optional[SamplingParams] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> GenerationResult:
        """``generate`` with a hard retry budget for retryable errors.

        Backoff is linear (``generation_retry_delay * attempt``). Blocked and
        other non-retryable errors are raised immediately.

        Raises:
            LLMRetryExhaustedError: every attempt failed with a retryable error.
        """
        max_retries = max_retries or self.settings.generation_max_retries
        last_error: Optional[LLMError] = None
        for attempt in range(1, max_retries + 1):
            try:
                return await self.generate(prompt, persona, sampling, timeout)
            except LLMError as e:
                if not e.retryable:
                    raise
                last_error = e
                if attempt < max_retries:
                    delay = self.settings.generation_retry_delay * attempt
                    logger.info("Retrying generation in %.1fs (attempt %d/%d)",
                                delay, attempt + 1, max_retries)
                    await asyncio.sleep(delay)
        raise LLMRetryExhaustedError(max_retries, last_error)

    def get_usage_summary(self) -> dict:
        """Return call count and token statistics."""
        return {
            "total_calls": self.total_calls,
            "input_tokens": self.total_input_tokens,
            "output_tokens": self.total_output_tokens,
            "total_cost_usd": round(self.total_cost_usd, 6),
        }
