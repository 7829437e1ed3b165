"""Custom exceptions for the compatdiff engine."""

from .models import FailureMode


class CompatDiffError(Exception):
    """Base exception for compatdiff errors."""
    failure_mode = FailureMode.ANALYSIS_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CompatDiffError):
    """Raised when a request or configuration fails validation."""
    failure_mode = FailureMode.INVALID_REQUEST

    def __init__(self, message: str, details: dict = None, failure_mode: FailureMode = None):
        super().__init__(message)
        self.details = details or {}
        if failure_mode is not None:
            self.failure_mode = failure_mode


class SchemaParseError(CompatDiffError):
    """Raised when a canonical schema document cannot be turned into a model."""
    failure_mode = FailureMode.INVALID_SOURCE_SCHEMA

    def __init__(self, message: str, location: str = None, reason: str = None):
        super().__init__(message)
        self.location = location
        self.reason = reason


class IncompatibleProvidersError(CompatDiffError):
    """Raised when source and target schemas belong to different providers."""
    failure_mode = FailureMode.INCOMPATIBLE_PROVIDERS

    def __init__(self, source_provider: str, target_provider: str):
        super().__init__(f"Provider mismatch: {source_provider} vs {target_provider}")
        self.source_provider = source_provider
        self.target_provider = target_provider


class ResourceExhaustedError(CompatDiffError):
    """Raised when a schema is larger than the configured element limit."""
    failure_mode = FailureMode.RESOURCE_EXHAUSTION

    def __init__(self, side: str, elements: int, limit: int):
        super().__init__(f"{side} schema has {elements} elements, limit is {limit}")
        self.side = side
        self.elements = elements
        self.limit = limit