"""Configuration package: settings, logging, and exceptions."""

from config.exceptions import (
    FactoryError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMBlockedError,
    LLMRetryExhaustedError,
    LLMResponseParseError,
    DatabaseError,
    WorkflowError,
    WorkflowStateError,
    InvalidTransitionError,
    ClaimConflictError,
    ValidationError,
    SchedulingError,
    InvalidConfigError,
)
from config.logging_config import setup_logging
from config.settings import PublishSlotConfig, QualityThresholds, Settings, get_settings

__all__ = [
    "Settings",
    "PublishSlotConfig",
    "QualityThresholds",
    "get_settings",
    "setup_logging",
    "FactoryError",
    "LLMError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMBlockedError",
    "LLMRetryExhaustedError",
    "LLMResponseParseError",
    "DatabaseError",
    "WorkflowError",
    "WorkflowStateError",
    "InvalidTransitionError",
    "ClaimConflictError",
    "ValidationError",
    "SchedulingError",
    "InvalidConfigError",
]
