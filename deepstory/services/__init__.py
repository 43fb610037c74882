"""Service layer for the narrative generation pipeline."""

from __future__ import annotations

from .errors import (  # noqa: F401
    ClientError,
    ConfigurationError,
    DeepStoryError,
    ExtractionError,
    NetworkFailure,
    ServerFailure,
    TimeoutFailure,
    TransientError,
    ValidationError,
)
from .invocation import InvocationClient, RetryPolicy  # noqa: F401
from .orchestrator import GenerationOrchestrator  # noqa: F401
from .prompts import PromptRegistry, format_prompt  # noqa: F401
from .providers import ProviderConfig, select_adapter  # noqa: F401
from .state import Chapter, NarrativeState, StoryInputs  # noqa: F401

__all__ = [
    "Chapter",
    "ClientError",
    "ConfigurationError",
    "DeepStoryError",
    "ExtractionError",
    "GenerationOrchestrator",
    "InvocationClient",
    "NarrativeState",
    "NetworkFailure",
    "PromptRegistry",
    "ProviderConfig",
    "RetryPolicy",
    "ServerFailure",
    "StoryInputs",
    "TimeoutFailure",
    "TransientError",
    "ValidationError",
    "format_prompt",
    "select_adapter",
]
