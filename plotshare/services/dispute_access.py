"""Who may see and do what on a dispute.

A user's relationship to a dispute is one of four roles, always produced by
``resolve_role``; call sites never infer roles on their own.
"""

import uuid

from plotshare.exceptions import NotAuthorized, NotFound
from plotshare.models.enums import DisputeAction, DisputeRole, DisputeStatus
from plotshare.services.bookings import BookingSnapshot
from plotshare.utils.dispute_state import is_terminal

PARTY_ACTIONS = frozenset({DisputeAction.READ, DisputeAction.POST_MESSAGE})

ROLE_ACTIONS: dict[DisputeRole, frozenset[DisputeAction]] = {
    DisputeRole.FILER: PARTY_ACTIONS,
    DisputeRole.COUNTERPARTY: PARTY_ACTIONS,
    DisputeRole.STAFF: frozenset(DisputeAction),
    DisputeRole.NONE: frozenset(),
}

# Actions that mutate the dispute and are refused once it is terminal
WRITE_ACTIONS = frozenset({
    DisputeAction.POST_MESSAGE,
    DisputeAction.POST_INTERNAL_MESSAGE,
    DisputeAction.START_REVIEW,
    DisputeAction.RESOLVE,
    DisputeAction.CLOSE,
})


def resolve_role(
    user_id: uuid.UUID,
    filed_by_id: uuid.UUID,
    booking: BookingSnapshot,
    is_staff: bool,
) -> DisputeRole:
    """Compute the user's role on a dispute.

    Party roles win over the staff capability, so a staff member who is a
    party to the booking is treated as that party and cannot adjudicate.
    """
    if user_id == filed_by_id:
        return DisputeRole.FILER
    if booking.other_party(filed_by_id) == user_id:
        return DisputeRole.COUNTERPARTY
    if is_staff:
        return DisputeRole.STAFF
    return DisputeRole.NONE


def permitted_actions(role: DisputeRole, status: DisputeStatus) -> frozenset[DisputeAction]:
    """Actions available to ``role`` while the dispute is in ``status``."""
    actions = ROLE_ACTIONS[role]
    if is_terminal(status):
        actions = actions - WRITE_ACTIONS
    return actions


def ensure_visible(role: DisputeRole) -> None:
    """Role NONE gets NotFound, never NotAuthorized, so existence does not leak."""
    if role == DisputeRole.NONE:
        raise NotFound("Dispute")


def ensure_allowed(role: DisputeRole, action: DisputeAction) -> None:
    """Raise unless ``role`` may perform ``action``, ignoring dispute status."""
    ensure_visible(role)
    if action not in ROLE_ACTIONS[role]:
        raise NotAuthorized(
            f"Role '{role.value}' is not allowed to {action.value.replace('_', ' ')} on this dispute"
        )
