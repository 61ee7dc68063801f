"""Custom exception hierarchy for the production pipeline."""

from typing import Optional


class FactoryError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# ---- LLM Errors ----

class LLMError(FactoryError):
    """Base exception for generation engine errors."""

    retryable = False


class LLMRateLimitError(LLMError):
    """Generation engine rate limit exceeded."""

    retryable = True

    def __init__(self, message: str = "API rate limit exceeded", retry_after: Optional[float] = None):
        details = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError):
    """Generation request timed out."""

    retryable = True


class LLMBlockedError(LLMError):
    """Request refused by the engine's safety filter. Never retried."""

    def __init__(self, message: str = "Content blocked by safety filter", reason: str = ""):
        super().__init__(message, {"reason": reason} if reason else None)
        self.reason = reason


class LLMRetryExhaustedError(LLMError):
    """Retry budget spent without a successful generation."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(
            f"Generation failed after {attempts} attempts",
            {"attempts": attempts, "last_error": str(last_error) if last_error else ""},
        )
        self.attempts = attempts
        self.last_error = last_error


class LLMResponseParseError(LLMError):
    """Failed to parse LLM response."""

    def __init__(self, message: str = "Failed to parse LLM response", raw_response: str = ""):
        details = {"raw_response": raw_response[:200]} if raw_response else {}
        super().__init__(message, details)
        self.raw_response = raw_response


# ---- Database Errors ----

class DatabaseError(FactoryError):
    """Database operation failed."""


# ---- Workflow Errors ----

class WorkflowError(FactoryError):
    """Base exception for pipeline orchestration errors."""


class WorkflowStateError(WorkflowError):
    """Invalid or missing workflow state."""


class InvalidTransitionError(WorkflowError):
    """A status change not allowed by the entity's transition table."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Illegal {entity} transition {current} -> {target}",
            {"entity": entity, "current": current, "target": target},
        )
        self.entity = entity
        self.current = current
        self.target = target


class ClaimConflictError(WorkflowError):
    """A conditional claim lost the race: the row was no longer in the expected state."""

    def __init__(self, entity: str, entity_id: int, expected: str):
        super().__init__(
            f"{entity} {entity_id} is no longer '{expected}'",
            {"entity": entity, "id": entity_id, "expected": expected},
        )


# ---- Validation Errors ----

class ValidationError(FactoryError):
    """Input validation failed."""


class SchedulingError(ValidationError):
    """A publish time or slot request cannot be satisfied."""


class InvalidConfigError(ValidationError):
    """Configuration value is invalid."""
