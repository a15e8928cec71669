"""Audit trail of staff actions on disputes.

Tracks: review started, resolutions, manual and automatic closures.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, JSON, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from plotshare.database import Base
from plotshare.models.enums import AuditAction
from plotshare.models.types import GUID, EnumString


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    action: Mapped[AuditAction] = mapped_column(EnumString(AuditAction, 50), nullable=False, index=True)
    # NULL for actions taken by the system (scheduler jobs)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True
    )
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
