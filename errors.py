"""
Error taxonomy for the negotiation engine.
All exceptions inherit from NegotiationError so the API layer can map them in one place.
"""

from enum import Enum
from typing import Optional


class NegotiationError(Exception):
    """Base exception for negotiation errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "NEGOTIATION_ERROR",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(NegotiationError):
    """A quote, vehicle, profile or journal entry required by the call is missing."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found",
            error_code="NOT_FOUND",
            details={"resource": resource, "id": resource_id},
        )


class AccessDeniedError(NegotiationError):
    """The record exists but the acting user may not see or change it."""

    def __init__(self, message: str = "Access denied to this quote", **details):
        super().__init__(message, error_code="ACCESS_DENIED", details=details)


class InvalidStateError(NegotiationError):
    """The quote status (or the request body) does not meet the call's precondition."""

    def __init__(self, message: str, **details):
        super().__init__(message, error_code="INVALID_STATE", details=details)


class StoreFailureError(NegotiationError):
    """The record store failed to answer."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Record store failure during {operation}",
            error_code="STORE_FAILURE",
            details={"operation": operation, "cause": str(cause) if cause else None},
        )
        self.cause = cause


class DropReason(str, Enum):
    """Why a quote was left out of a batch read model."""

    VEHICLE_UNRESOLVED = "vehicle_unresolved"
    NOT_ASSIGNED = "not_assigned"
    REVISION_EVENT_MISSING = "revision_event_missing"
    PARTNER_UPDATE_MISSING = "partner_update_missing"
    STORE_FAILURE = "store_failure"
    MALFORMED_RECORD = "malformed_record"
