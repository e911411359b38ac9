"""Core custom exceptions for the engine."""

from __future__ import annotations

from enum import Enum


class PipelineError(Exception):
    """Base exception for pipeline-related errors."""


class ConfigurationError(PipelineError):
    """Exception for configuration-related errors (e.g., missing templates, invalid settings)."""


class SessionNotFound(PipelineError):
    """Raised when an operation references a session id the store does not know."""


class ProviderErrorKind(str, Enum):
    NOT_CONFIGURED = "not_configured"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    INVALID_RESPONSE = "invalid_response"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ProviderError(PipelineError):
    """A single provider call failed. Recovered locally by the router."""

    def __init__(self, kind: ProviderErrorKind, message: str, provider: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """The candidate has no usable client (not registered, disabled or missing capability)."""

    def __init__(self, provider: str, message: str | None = None):
        super().__init__(
            ProviderErrorKind.NOT_CONFIGURED,
            message or f"Provider '{provider}' is not available",
            provider=provider,
        )


class AllProvidersExhausted(PipelineError):
    """Every candidate of a route failed. Fatal for the call that raised it."""

    def __init__(self, failures: list[tuple[str, Exception]]):
        self.failures = failures
        tried = ", ".join(f"{name} ({exc})" for name, exc in failures) or "no candidates"
        super().__init__(f"All providers failed: {tried}")


class ContextQueryFailed(PipelineError):
    """A context source query failed. Never propagated past the clarification collector."""


class ValidationFailed(PipelineError):
    """Validation found gaps or issues in a draft.

    Not raised by the pipeline: validation results are data that drive another
    refine iteration. ``ValidationResult.raise_for_findings`` turns a result into this
    exception for callers that want to fail hard.
    """

    def __init__(self, gaps: list[str], issues: list[str]):
        self.gaps = gaps
        self.issues = issues
        super().__init__(f"Validation failed: {len(gaps)} gaps, {len(issues)} issues")


class JSONParsingError(PipelineError):
    """Raised when JSON parsing of a structured stage output fails"""


class RequestDeadlineExceeded(PipelineError):
    """A chat or generate call ran past its overall deadline. Nothing was committed."""
