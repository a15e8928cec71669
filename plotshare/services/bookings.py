import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.models.booking import Booking
from plotshare.models.enums import BookingStatus


@dataclass(frozen=True)
class BookingSnapshot:
    """Point-in-time view of a marketplace booking."""

    id: uuid.UUID
    owner_id: uuid.UUID
    renter_id: uuid.UUID
    start_date: date
    end_date: date
    total_amount: Decimal
    status: BookingStatus
    stripe_payment_intent_id: str | None = None

    def is_party(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.owner_id, self.renter_id)

    def other_party(self, user_id: uuid.UUID) -> uuid.UUID | None:
        if user_id == self.owner_id:
            return self.renter_id
        if user_id == self.renter_id:
            return self.owner_id
        return None


class BookingProvider:
    """Reads bookings from the marketplace's ``bookings`` table.

    Every call hits the database, so amounts are never served from a stale
    identity-map copy loaded earlier in the request.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_booking(self, booking_id: uuid.UUID) -> BookingSnapshot | None:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            return None
        return BookingSnapshot(
            id=booking.id,
            owner_id=booking.owner_id,
            renter_id=booking.renter_id,
            start_date=booking.start_date,
            end_date=booking.end_date,
            total_amount=Decimal(booking.total_amount),
            status=BookingStatus(booking.status),
            stripe_payment_intent_id=booking.stripe_payment_intent_id,
        )
