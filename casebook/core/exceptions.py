"""
Casebook exception hierarchy.

Services raise these types; ``casebook.main`` registers one handler per type
so every router gets the same status code and ``{"success": false, "error": ...}``
body without catching anything itself.

Usage:
    from casebook.core.exceptions import NotFoundError, ImmutableError

    raise NotFoundError("Draft", draft_id)
    raise ImmutableError(folder_name)
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CasebookError(Exception):
    """Base class for every domain error raised by the services."""


class ValidationError(CasebookError):
    """Input failed a business rule (missing mandatory field, bad upload, bad status).

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """The lifecycle state machine does not allow ``current`` -> ``target``."""

    def __init__(self, resource: str, current: str, target: str) -> None:
        self.resource = resource
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move {resource} from '{current}' to '{target}'",
            details={"status": f"{current} -> {target}"},
        )


class NotFoundError(CasebookError):
    """A draft, case study or blob referenced by id does not exist.

    Maps to HTTP 404.
    """

    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" '{resource_id}'"
        msg += " not found"
        super().__init__(msg)


class ImmutableError(CasebookError):
    """Attempted mutation of a published case study. No state is changed.

    Maps to HTTP 400; the message always contains "immutable".
    """

    def __init__(self, folder_name: str) -> None:
        self.folder_name = folder_name
        super().__init__(
            f"Case study '{folder_name}' is immutable: cannot modify a published case study"
        )


class ConflictError(CasebookError):
    """A compare-and-swap lost against a concurrent writer.

    Maps to HTTP 409.

    Args:
        resource: Record type ("Draft", "CaseStudy").
        resource_id: Primary key of the contested row.
        expected_version: Row version the caller read before writing.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str,
        expected_version: Optional[int] = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        msg = f"{resource} '{resource_id}' was modified concurrently"
        if expected_version is not None:
            msg += f" (expected row version {expected_version})"
        super().__init__(msg)


class StorageError(CasebookError):
    """Blob store read/write failed after the bounded retries were exhausted.

    Maps to HTTP 503.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message)


class BlobNotFoundError(StorageError):
    """The requested blob key does not exist. Never retried; maps to HTTP 404."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob '{key}' not found", key=key)


class DocumentGenerationError(CasebookError):
    """Document synthesis or packing failed, or ran past its time budget."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        self.timed_out = timed_out
        super().__init__(message)


class MalformedInputError(CasebookError):
    """A best-effort JSON-encoded field could not be decoded.

    Raised by the coercion helpers and caught at the same boundary, where the
    field degrades to its empty default. Never surfaced to API callers.
    """

    def __init__(self, field: str, raw: Any) -> None:
        self.field = field
        self.raw = raw
        super().__init__(f"Malformed value for '{field}'")
