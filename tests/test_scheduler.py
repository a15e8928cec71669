"""Tests for automatic closing of disputes on cancelled bookings."""

from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plotshare.models.audit_log import AuditLog
from plotshare.models.dispute import Dispute
from plotshare.models.enums import AuditAction, BookingStatus, DisputeEvent, DisputeStatus
from plotshare.services.disputes import (
    AUTO_CLOSE_NOTE,
    close_disputes_for_booking,
    find_cancelled_bookings_with_open_disputes,
    start_review,
)
from plotshare.services.scheduler import close_disputes_of_cancelled_bookings


def _sessions(db: AsyncSession):
    """A session factory bound to the test engine, standing in for the app's."""
    return async_sessionmaker(db.bind, class_=AsyncSession, expire_on_commit=False)


async def _reload(db: AsyncSession, dispute_id) -> Dispute:
    result = await db.execute(
        select(Dispute).where(Dispute.id == dispute_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_active_booking_is_left_alone(db: AsyncSession, dispute, booking, notifier):
    assert await close_disputes_for_booking(db, booking.id, notifier=notifier) == []
    assert dispute.status == DisputeStatus.OPEN


@pytest.mark.asyncio
async def test_cancelled_booking_closes_dispute(db: AsyncSession, dispute, booking, owner, renter, notifier):
    booking.status = BookingStatus.CANCELLED
    await db.flush()
    notifier.reset_mock()

    closed = await close_disputes_for_booking(db, booking.id, notifier=notifier)

    assert [d.id for d in closed] == [dispute.id]
    assert dispute.status == DisputeStatus.CLOSED
    assert dispute.closed_at is not None
    assert dispute.closed_by_id is None
    assert dispute.resolution_notes == AUTO_CLOSE_NOTE

    result = await db.execute(select(AuditLog).where(AuditLog.dispute_id == dispute.id))
    entry = result.scalar_one()
    assert entry.action == AuditAction.AUTO_CLOSED
    assert entry.actor_id is None

    event, recipients, _ = notifier.dispatch.call_args[0]
    assert event == DisputeEvent.CLOSED
    assert set(recipients) == {owner.id, renter.id}


@pytest.mark.asyncio
async def test_under_review_dispute_is_closed_too(db: AsyncSession, dispute, booking, staff, notifier):
    await start_review(db, staff.id, dispute.id, notifier=notifier)
    booking.status = BookingStatus.CANCELLED
    await db.flush()

    closed = await close_disputes_for_booking(db, booking.id, notifier=notifier)
    assert len(closed) == 1
    assert closed[0].status == DisputeStatus.CLOSED


@pytest.mark.asyncio
async def test_find_cancelled_bookings(db: AsyncSession, dispute, booking):
    assert await find_cancelled_bookings_with_open_disputes(db, 10) == []
    booking.status = BookingStatus.CANCELLED
    await db.flush()
    assert await find_cancelled_bookings_with_open_disputes(db, 10) == [booking.id]


@pytest.mark.asyncio
async def test_sweep_job_commits_closures(db: AsyncSession, dispute, booking):
    booking.status = BookingStatus.CANCELLED
    await db.commit()

    with patch("plotshare.services.scheduler.async_session", _sessions(db)):
        closed = await close_disputes_of_cancelled_bookings()

    assert closed == 1
    reloaded = await _reload(db, dispute.id)
    assert reloaded.status == DisputeStatus.CLOSED

    # Nothing left to do on the next run
    with patch("plotshare.services.scheduler.async_session", _sessions(db)):
        assert await close_disputes_of_cancelled_bookings() == 0
