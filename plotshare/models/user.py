import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from plotshare.database import Base
from plotshare.models.enums import UserRole
from plotshare.models.types import GUID, EnumString


class User(Base):
    """Local mirror of an identity-provider account.

    Rows are synced by the identity provider; this service never creates
    credentials. ``role`` carries the staff capability claim.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('member', 'instructor', 'admin', 'super_admin')",
            name="ck_users_role_valid",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(EnumString(UserRole, 20), nullable=False, default=UserRole.MEMBER)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
