import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from plotshare.database import Base
from plotshare.models.enums import DisputeReason, DisputeResolution, DisputeStatus
from plotshare.models.types import GUID, EnumString

_ACTIVE_STATUS_SQL = text("status IN ('open', 'under_review')")


class Dispute(Base):
    __tablename__ = "disputes"
    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'under_review', 'resolved', 'closed')",
            name="ck_disputes_status_valid",
        ),
        CheckConstraint(
            "reason IN ('property_not_as_described', 'access_issues', 'payment_dispute', "
            "'early_termination', 'damage_claim', 'safety_concern', "
            "'communication_issues', 'other')",
            name="ck_disputes_reason_valid",
        ),
        CheckConstraint(
            "resolution IS NULL OR resolution IN ('full_refund', 'partial_refund', 'no_refund', "
            "'deposit_returned', 'deposit_forfeited', 'mutual_agreement', 'dismissed')",
            name="ck_disputes_resolution_valid",
        ),
        CheckConstraint(
            "requested_amount IS NULL OR requested_amount >= 0",
            name="ck_disputes_requested_amount_positive",
        ),
        CheckConstraint(
            "resolved_amount IS NULL OR resolved_amount >= 0",
            name="ck_disputes_resolved_amount_positive",
        ),
        # The four resolution fields are set together, and only on RESOLVED
        CheckConstraint(
            "(status = 'resolved' AND resolution IS NOT NULL AND resolved_amount IS NOT NULL "
            "AND resolved_by_id IS NOT NULL AND resolved_at IS NOT NULL) OR "
            "(status <> 'resolved' AND resolution IS NULL AND resolved_amount IS NULL "
            "AND resolved_by_id IS NULL AND resolved_at IS NULL)",
            name="ck_disputes_resolution_fields_consistent",
        ),
        # At most one non-terminal dispute per booking
        Index(
            "uq_disputes_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=_ACTIVE_STATUS_SQL,
            sqlite_where=_ACTIVE_STATUS_SQL,
        ),
        Index("ix_disputes_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    filed_by_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reason: Mapped[DisputeReason] = mapped_column(EnumString(DisputeReason, 40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    requested_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[DisputeStatus] = mapped_column(
        EnumString(DisputeStatus, 20), nullable=False, default=DisputeStatus.OPEN
    )
    resolution: Mapped[DisputeResolution | None] = mapped_column(
        EnumString(DisputeResolution, 30), nullable=True
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    resolved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Opaque reference returned by the reconciliation service (e.g. Stripe refund id)
    reconciliation_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    review_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # closed_by_id stays NULL when the dispute was closed automatically
    closed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Last sequence number handed out to a message of this dispute
    message_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="disputes", lazy="raise")
    filed_by: Mapped["User"] = relationship("User", foreign_keys=[filed_by_id], lazy="raise")
    messages: Mapped[list["DisputeMessage"]] = relationship(
        "DisputeMessage",
        back_populates="dispute",
        order_by="DisputeMessage.sequence",
        lazy="raise",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}
