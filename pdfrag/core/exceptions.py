"""
Exception hierarchy for the pdfrag service.

Component boundaries catch these and convert them into structured results
(IngestionResult, GateDecision, terminal SSE frames); routes map the ones that
reach them onto HTTP status codes.
"""

from typing import Any


class PdfRagError(Exception):
    """Base exception for all pdfrag errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(PdfRagError):
    """Raised when request input is missing or malformed."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class AuthorizationError(PdfRagError):
    """
    Raised for unauthenticated callers, non-owners and bad service tokens.

    `status_code` distinguishes 401 (who are you) from 403 (not yours).
    """

    def __init__(self, message: str, status_code: int = 401, details: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, details)


class NotFoundError(PdfRagError):
    """Raised when a thread, document or job does not exist."""


class UpstreamError(PdfRagError):
    """Raised when a fetch, model, index or billing provider call fails."""

    def __init__(self, service: str, message: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["service"] = service
        super().__init__(message, details)


class StreamDeadlineExceeded(UpstreamError):
    """Raised when the model stream does not complete within the configured deadline."""

    def __init__(self, deadline_seconds: float) -> None:
        super().__init__("llm", f"Model stream exceeded deadline of {deadline_seconds:.0f}s")
