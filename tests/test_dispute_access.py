"""Tests for role resolution and permitted actions."""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from plotshare.exceptions import NotAuthorized, NotFound
from plotshare.models.enums import BookingStatus, DisputeAction, DisputeRole, DisputeStatus
from plotshare.services.bookings import BookingSnapshot
from plotshare.services.dispute_access import (
    ensure_allowed,
    ensure_visible,
    permitted_actions,
    resolve_role,
)

OWNER = uuid.uuid4()
RENTER = uuid.uuid4()
STAFF = uuid.uuid4()
STRANGER = uuid.uuid4()

BOOKING = BookingSnapshot(
    id=uuid.uuid4(),
    owner_id=OWNER,
    renter_id=RENTER,
    start_date=date(2026, 5, 1),
    end_date=date(2026, 9, 30),
    total_amount=Decimal("500.00"),
    status=BookingStatus.ACTIVE,
)


def test_renter_filer_and_owner_counterparty():
    assert resolve_role(RENTER, RENTER, BOOKING, is_staff=False) == DisputeRole.FILER
    assert resolve_role(OWNER, RENTER, BOOKING, is_staff=False) == DisputeRole.COUNTERPARTY


def test_owner_filer_and_renter_counterparty():
    assert resolve_role(OWNER, OWNER, BOOKING, is_staff=False) == DisputeRole.FILER
    assert resolve_role(RENTER, OWNER, BOOKING, is_staff=False) == DisputeRole.COUNTERPARTY


def test_staff_and_none():
    assert resolve_role(STAFF, RENTER, BOOKING, is_staff=True) == DisputeRole.STAFF
    assert resolve_role(STRANGER, RENTER, BOOKING, is_staff=False) == DisputeRole.NONE


def test_party_role_wins_over_staff_capability():
    """A staff member who is party to the booking cannot adjudicate it."""
    assert resolve_role(OWNER, RENTER, BOOKING, is_staff=True) == DisputeRole.COUNTERPARTY
    assert resolve_role(RENTER, RENTER, BOOKING, is_staff=True) == DisputeRole.FILER


def test_party_actions_while_open():
    actions = permitted_actions(DisputeRole.FILER, DisputeStatus.OPEN)
    assert actions == {DisputeAction.READ, DisputeAction.POST_MESSAGE}
    assert permitted_actions(DisputeRole.COUNTERPARTY, DisputeStatus.UNDER_REVIEW) == actions


def test_staff_actions_while_open():
    actions = permitted_actions(DisputeRole.STAFF, DisputeStatus.OPEN)
    assert DisputeAction.RESOLVE in actions
    assert DisputeAction.START_REVIEW in actions
    assert DisputeAction.READ_INTERNAL in actions
    assert DisputeAction.POST_INTERNAL_MESSAGE in actions


@pytest.mark.parametrize("status", [DisputeStatus.RESOLVED, DisputeStatus.CLOSED])
def test_terminal_disputes_are_read_only(status):
    assert permitted_actions(DisputeRole.FILER, status) == {DisputeAction.READ}
    assert permitted_actions(DisputeRole.STAFF, status) == {
        DisputeAction.READ,
        DisputeAction.READ_INTERNAL,
    }


def test_none_has_no_actions():
    assert permitted_actions(DisputeRole.NONE, DisputeStatus.OPEN) == frozenset()


def test_none_gets_not_found_never_not_authorized():
    with pytest.raises(NotFound):
        ensure_visible(DisputeRole.NONE)
    with pytest.raises(NotFound):
        ensure_allowed(DisputeRole.NONE, DisputeAction.RESOLVE)


def test_party_cannot_resolve():
    with pytest.raises(NotAuthorized):
        ensure_allowed(DisputeRole.FILER, DisputeAction.RESOLVE)
    with pytest.raises(NotAuthorized):
        ensure_allowed(DisputeRole.COUNTERPARTY, DisputeAction.POST_INTERNAL_MESSAGE)
    ensure_allowed(DisputeRole.STAFF, DisputeAction.RESOLVE)
