"""Custom exception classes for the application."""

from typing import Any


class KeywordScopeError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# Input Errors
class InvalidInputError(KeywordScopeError):
    """Caller supplied unusable input. Not retryable."""

    pass


class InsufficientInputError(InvalidInputError):
    """Too few keywords to run a stage."""

    def __init__(self, required: int, received: int) -> None:
        super().__init__(
            f"At least {required} keywords are required, received {received}",
            {"required": required, "received": received},
        )


# Research Record Errors
class ResearchNotFoundError(KeywordScopeError):
    """Research record not found."""

    def __init__(self, research_id: str) -> None:
        super().__init__(f"Research not found: {research_id}", {"research_id": research_id})


class ResearchConflictError(KeywordScopeError):
    """A research record with the generated id already exists."""

    def __init__(self, research_id: str) -> None:
        super().__init__(f"Research already exists: {research_id}", {"research_id": research_id})


class InvariantViolationError(KeywordScopeError):
    """Data-integrity check failed. Should be logged loudly and never retried."""

    pass


# Volume Enrichment Errors
class VolumeEnrichmentError(KeywordScopeError):
    """Every volume batch failed."""

    def __init__(self, errors: list[Any]) -> None:
        self.errors = list(errors)
        super().__init__(
            f"All {len(self.errors)} volume batches failed",
            {"batch_errors": [str(error) for error in self.errors]},
        )


# Clustering Errors
class ClusteringError(KeywordScopeError):
    """Base class for clustering stream errors."""

    pass


class ClusterTimeoutError(ClusteringError):
    """Cluster stream did not finish in time and produced nothing usable."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Clustering timed out after {timeout_ms}ms", {"timeout_ms": timeout_ms})


class ClusterCancelledError(ClusteringError):
    """Cluster stream was cancelled by the caller."""

    def __init__(self) -> None:
        super().__init__("Clustering was cancelled")


class ClusterStreamError(ClusteringError):
    """The model stream itself failed before finishing."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(
            f"Cluster stream failed: {error}",
            {"error_type": type(error).__name__},
        )


class MalformedOutputError(ClusteringError):
    """Model output did not contain a parseable JSON object."""

    def __init__(self, raw_output: str) -> None:
        self.raw_output = raw_output
        super().__init__(
            "Could not parse JSON from model output",
            {"raw_length": len(raw_output), "raw_preview": raw_output[:200]},
        )


class SchemaMismatchError(ClusteringError):
    """Model output parsed but did not match the cluster schema."""

    pass


# External API Errors
class ExternalAPIError(KeywordScopeError):
    """Error calling external API."""

    def __init__(self, api_name: str, message: str) -> None:
        self.api_name = api_name
        super().__init__(f"{api_name} API error: {message}", {"api_name": api_name})


class UpstreamUnavailableError(ExternalAPIError):
    """A required upstream lookup failed. Retryable by the caller."""

    pass


class RateLimitExceededError(ExternalAPIError):
    """Rate limit exceeded for external API."""

    def __init__(self, api_name: str, retry_after_seconds: float | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(api_name, "Rate limit exceeded")


class APIKeyMissingError(ExternalAPIError):
    """API key not configured."""

    def __init__(self, api_name: str) -> None:
        super().__init__(api_name, "API key not configured")
