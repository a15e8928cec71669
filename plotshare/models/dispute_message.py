import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from plotshare.database import Base
from plotshare.models.types import GUID


class DisputeMessage(Base):
    """One entry of a dispute thread. Append-only: never updated or deleted."""

    __tablename__ = "dispute_messages"
    __table_args__ = (
        UniqueConstraint("dispute_id", "sequence", name="uq_dispute_messages_sequence"),
        Index("ix_dispute_messages_dispute_created", "dispute_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # True = staff-only visibility
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Insertion order within the dispute, breaks ties between equal timestamps
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    dispute: Mapped["Dispute"] = relationship("Dispute", back_populates="messages", lazy="raise")
    sender: Mapped["User"] = relationship("User", lazy="raise")
