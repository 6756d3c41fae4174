"""
Unified exception hierarchy for the assessment pipeline.

All domain exceptions inherit from AssessmentError and carry:
- error_code: machine-readable string (e.g. "CONTENT_UNAVAILABLE")
- status_code: HTTP status code for the surrounding request handlers
- message: human-readable description
- context: optional structured metadata dict
"""

from typing import Optional, Dict, Any


class AssessmentError(Exception):
    """Base exception for all assessment domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)


class ValidationError(AssessmentError):
    """400-level validation / bad-request errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_REQUEST",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=400, context=context)


class NotFoundError(AssessmentError):
    """404 resource-not-found errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_FOUND",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=404, context=context)


class ContentUnavailableError(NotFoundError):
    """The requested scope has no usable text, even after retries and the stub fallback."""

    def __init__(self, scope_kind: str, scope_id: str, context: Optional[Dict[str, Any]] = None):
        self.scope_kind = scope_kind
        self.scope_id = scope_id
        ctx = {"scope_kind": scope_kind, "scope_id": scope_id}
        if context:
            ctx.update(context)
        super().__init__(
            f"No content available for {scope_kind} {scope_id}",
            error_code="CONTENT_UNAVAILABLE",
            context=ctx,
        )


class GenerationError(AssessmentError):
    """500-level generation failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERATION_FAILED",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)


class ModelCallError(AssessmentError):
    """Text-generation provider failed after the gateway's retry budget."""

    def __init__(
        self,
        message: str,
        attempts: int = 1,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.attempts = attempts
        ctx = {"attempts": attempts}
        if context:
            ctx.update(context)
        super().__init__(message, error_code="MODEL_CALL_FAILED", status_code=502, context=ctx)


class GradingError(AssessmentError):
    """A single response could not be graded (unparseable model output)."""

    def __init__(
        self,
        message: str,
        error_code: str = "GRADING_FAILED",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)


class StorageError(AssessmentError):
    """500-level database / storage failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "STORAGE_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)
