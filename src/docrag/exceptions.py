"""Error taxonomy shared by every layer.

Request-scoped operations raise these directly to their caller; the
background pipeline records them on the document instead (see
:mod:`docrag.ingestion.pipeline`).  The HTTP layer maps each class to a
status code in :mod:`docrag.serving.app`.
"""

from __future__ import annotations

from typing import Any


class DocRagError(Exception):
    """Base class for all application errors.

    Parameters
    ----------
    message:
        Human-readable description.
    details:
        Optional context used in logs and error payloads.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(DocRagError, ValueError):
    """Malformed or missing input."""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class NotFound(DocRagError):
    """An id does not resolve to a stored record."""

    def __init__(self, kind: str, identifier: Any, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details[f"{kind}_id"] = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}", details)


class StateConflict(DocRagError):
    """Operation is not valid for the document's current status."""


class InsufficientContent(DocRagError):
    """Text is too short to chunk or index."""


class ExternalServiceError(DocRagError):
    """An extraction, embedding or generation provider failed."""

    def __init__(self, service: str, message: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["service"] = service
        self.service = service
        super().__init__(message, details)


class ExternalServiceUnavailable(ExternalServiceError):
    """A provider cannot be reached at all."""


class ExtractionError(ExternalServiceError):
    """The extraction provider could not read the file."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("extraction", message, details)


class GenerationUnauthorized(ExternalServiceError):
    """The generation provider rejected the configured credentials."""

    def __init__(self, message: str = "Generation provider rejected the API key") -> None:
        super().__init__("generation", message)


class GenerationRateLimited(ExternalServiceError):
    """The generation provider is throttling requests."""

    def __init__(self, message: str = "Generation provider rate limit exceeded, try again later") -> None:
        super().__init__("generation", message)


class PersistenceError(DocRagError):
    """The record store failed."""
