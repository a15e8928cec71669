import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from plotshare.database import Base
from plotshare.models.enums import BookingStatus
from plotshare.models.types import GUID, EnumString


class Booking(Base):
    """Plot rental booking, owned by the marketplace.

    The dispute engine only reads this table (through ``BookingProvider``)
    and references it by foreign key.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_booking_total_amount_positive"),
        CheckConstraint("end_date >= start_date", name="ck_booking_dates_ordered"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    renter_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        EnumString(BookingStatus, 20), nullable=False, default=BookingStatus.PENDING, index=True
    )
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    disputes: Mapped[list["Dispute"]] = relationship(
        "Dispute", back_populates="booking", lazy="raise"
    )
