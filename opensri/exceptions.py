"""Standardized exception hierarchy for OpenSRI.

All exceptions carry a structured ``context`` dict so they can be logged with
structlog without losing the document/order identifiers needed to replay a
failed step. Each class also declares the HTTP status the admin API layer
should answer with.

Usage:
    from opensri.exceptions import ValidationError, RecordNotFoundError

    try:
        factory.from_payload(payload)
    except ValidationError as e:
        logger.error("validation_failed", error=str(e), context=e.context)
"""

from __future__ import annotations

from typing import Any


class OpenSRIError(Exception):
    """Base exception for all OpenSRI errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging (dict)
        original_error: Original exception if wrapped
        http_status: Status code the admin API answers with
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Format exception with context for logging."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        if self.original_error:
            base = f"{base} [caused by: {type(self.original_error).__name__}]"
        return base

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, context={self.context!r})"


# =============================================================================
# Validation & Input Errors
# =============================================================================


class ValidationError(OpenSRIError):
    """Raised when input validation fails.

    Malformed line items, failed reconciliation, bad customer identification.
    Never persisted.
    """

    http_status = 422

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]  # Truncate for safety
        if constraint:
            context["constraint"] = constraint
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class ConfigurationError(OpenSRIError):
    """Raised when application configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        expected: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if setting:
            context["setting"] = setting
        if expected:
            context["expected"] = expected
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# Database & Persistence Errors
# =============================================================================


class DatabaseError(OpenSRIError):
    """Base class for database-related errors."""


class RecordNotFoundError(DatabaseError):
    """Raised when a database record is not found."""

    http_status = 404

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: int | str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = str(entity_id)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class DatabaseIntegrityError(DatabaseError):
    """Raised when database integrity constraints are violated."""


# =============================================================================
# Business Logic Errors
# =============================================================================


class BusinessLogicError(OpenSRIError):
    """Base class for business rule violations."""

    http_status = 400


class DocumentStateError(BusinessLogicError):
    """Raised when an operation is not legal in the document's current state.

    Example: downloading the PDF of a document that is not authorized, or
    retrying a document that already reached a terminal state.
    """

    http_status = 422

    def __init__(
        self,
        message: str,
        *,
        document_id: int | None = None,
        current_state: str | None = None,
        attempted_action: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if document_id is not None:
            context["document_id"] = document_id
        if current_state:
            context["current_state"] = current_state
        if attempted_action:
            context["attempted_action"] = attempted_action
        kwargs["context"] = context
        super().__init__(message, **kwargs)


class LedgerImbalanceError(BusinessLogicError):
    """Raised when a ledger transaction's debits and credits differ.

    This is an internal consistency failure (a logic bug), never an external
    one. The transaction is aborted and nothing is persisted.
    """

    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        reference_number: str | None = None,
        total_debit: Any = None,
        total_credit: Any = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if reference_number:
            context["reference_number"] = reference_number
        if total_debit is not None:
            context["total_debit"] = str(total_debit)
        if total_credit is not None:
            context["total_credit"] = str(total_credit)
        kwargs["context"] = context
        super().__init__(message, **kwargs)


# =============================================================================
# External Integration Errors
# =============================================================================


class IntegrationError(OpenSRIError):
    """Base class for external service integration errors."""


class TaxAuthorityError(IntegrationError):
    """Raised when the tax authority (SRI) integration fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        authority_message: str | None = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if status_code is not None:
            context["status_code"] = status_code
        if authority_message:
            context["authority_message"] = authority_message[:200]
        kwargs["context"] = context
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.authority_message = authority_message


class TransientAuthorityError(TaxAuthorityError):
    """Timeout, transport failure, 5xx or rejected credentials. Retryable."""


class PermanentAuthorityError(TaxAuthorityError):
    """The authority rejected the document content. Not retryable."""


class NotificationError(IntegrationError):
    """Raised when the customer email could not be sent."""


# =============================================================================
# Artifact Errors
# =============================================================================


class ArtifactError(OpenSRIError):
    """Base class for document artifact (PDF) errors."""


class ArtifactGenerationError(ArtifactError):
    """Raised when rendering the PDF fails."""


class ArtifactMissingError(ArtifactError):
    """Raised when a required artifact is not present in storage."""

    http_status = 422


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    error: Exception,
    message: str,
    *,
    exception_class: type[OpenSRIError] = OpenSRIError,
    **context: Any,
) -> OpenSRIError:
    """Wrap an external exception in the OpenSRI exception hierarchy.

    Example:
        try:
            session.commit()
        except IntegrityError as e:
            raise wrap_exception(
                e,
                "Duplicate ledger reference",
                exception_class=DatabaseIntegrityError,
                reference_number="SALE-1001",
            )
    """
    return exception_class(
        message,
        context=context,
        original_error=error,
    )


def http_status_for(error: Exception) -> int:
    """Map an exception raised by an admin operation to an HTTP status code."""
    if isinstance(error, OpenSRIError):
        return error.http_status
    return 500


__all__ = [
    "OpenSRIError",
    "ValidationError",
    "ConfigurationError",
    "DatabaseError",
    "RecordNotFoundError",
    "DatabaseIntegrityError",
    "BusinessLogicError",
    "DocumentStateError",
    "LedgerImbalanceError",
    "IntegrationError",
    "TaxAuthorityError",
    "TransientAuthorityError",
    "PermanentAuthorityError",
    "NotificationError",
    "ArtifactError",
    "ArtifactGenerationError",
    "ArtifactMissingError",
    "wrap_exception",
    "http_status_for",
]
