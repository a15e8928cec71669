"""Error kinds reported by the dispute engine.

Engine code raises these instead of ``HTTPException`` so that non-HTTP
callers (the scheduler, scripts) get clean exceptions. ``main.py`` maps every
``DisputeError`` to a JSON body carrying its ``kind``.
"""

from fastapi import status


class DisputeError(Exception):
    """Base class for every error kind the dispute engine reports."""

    kind: str = "dispute_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retriable: bool = False
    default_detail: str = "The dispute request could not be processed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(DisputeError):
    """Missing resource, or a resource the actor has no visibility on.

    Both cases produce the same response so existence never leaks.
    """

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")


class NotAuthorized(DisputeError):
    kind = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action on this dispute"


class InvalidContent(DisputeError):
    kind = "invalid_content"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The submitted content is invalid"


class IllegalTransition(DisputeError):
    kind = "illegal_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition dispute from '{current}' to '{requested}'")


class InvalidResolutionPayload(DisputeError):
    kind = "invalid_resolution_payload"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The resolution payload is invalid"


class DisputeClosed(DisputeError):
    kind = "dispute_closed"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This dispute is resolved or closed and can no longer be changed"


class DisputeAlreadyOpen(DisputeError):
    kind = "dispute_already_open"
    status_code = status.HTTP_409_CONFLICT
    default_detail = "A dispute is already open for this booking"


class ReconciliationFailed(DisputeError):
    kind = "reconciliation_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retriable = True
    default_detail = "The financial reconciliation of this resolution failed"


class ConcurrencyConflict(DisputeError):
    kind = "concurrency_conflict"
    status_code = status.HTTP_409_CONFLICT
    retriable = True
    default_detail = "This dispute was modified by another request. Reload it and try again."
