"""Error taxonomy shared by the generation services."""

from __future__ import annotations

from typing import Optional


class DeepStoryError(RuntimeError):
    """Base class for every failure surfaced by the generation services."""

    kind = "error"


class ConfigurationError(DeepStoryError):
    """Raised when credentials or the model selection are missing or invalid."""

    kind = "configuration"


class ValidationError(DeepStoryError):
    """Raised when an input or precondition is rejected before any network call."""

    kind = "validation"


class ExtractionError(DeepStoryError):
    """Raised when model output could not be parsed into any recognised section."""

    kind = "extraction"


class ClientError(DeepStoryError):
    """Raised for non-transient provider rejections (4xx, bad key, unknown model)."""

    kind = "client"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(DeepStoryError):
    """Raised once retries for a transient failure are exhausted."""

    kind = "transient"
    failure_class = "transient"

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class TimeoutFailure(TransientError):
    failure_class = "timeout"


class NetworkFailure(TransientError):
    failure_class = "network"


class ServerFailure(TransientError):
    failure_class = "server"


__all__ = [
    "ClientError",
    "ConfigurationError",
    "DeepStoryError",
    "ExtractionError",
    "NetworkFailure",
    "ServerFailure",
    "TimeoutFailure",
    "TransientError",
    "ValidationError",
]
