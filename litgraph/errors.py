"""
Error taxonomy shared by the pipeline, the graph engine and the providers.

Callers (an API layer, the CLI script) map these onto their own surface:
InvalidInputError -> 400, NotFoundError -> 404, StateConflictError -> 409,
UpstreamError -> 502.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LitGraphError(Exception):
    """Base class; carries an optional machine-readable detail dict."""

    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInputError(LitGraphError, ValueError):
    code = "invalid_input"


class NotFoundError(LitGraphError, LookupError):
    code = "not_found"

    @classmethod
    def for_resource(cls, resource: str, resource_id: str) -> "NotFoundError":
        return cls(f"{resource} not found: {resource_id}", {"resource": resource, "id": resource_id})


class StateConflictError(LitGraphError):
    code = "state_conflict"


class UpstreamError(LitGraphError):
    """A collaborator (search, extraction, vocabulary lookup) failed."""

    code = "upstream_error"


class JobCancelled(LitGraphError):
    """Raised inside a pipeline run once its cancellation flag is observed."""

    code = "cancelled"
