"""Initial dispute schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = sa.dialects.postgresql.UUID(as_uuid=True)
ACTIVE_STATUS_SQL = sa.text("status IN ('open', 'under_review')")


def upgrade() -> None:
    bind = op.get_bind()
    existing = set(sa.inspect(bind).get_table_names())

    # users and bookings belong to the marketplace; only created for local setups
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", UUID, primary_key=True),
            sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
            sa.Column("role", sa.String(20), nullable=False, server_default="member"),
            sa.Column("first_name", sa.String(100), nullable=True),
            sa.Column("last_name", sa.String(100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint(
                "role IN ('member', 'instructor', 'admin', 'super_admin')",
                name="ck_users_role_valid",
            ),
        )

    if "bookings" not in existing:
        op.create_table(
            "bookings",
            sa.Column("id", UUID, primary_key=True),
            sa.Column("owner_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
            sa.Column("renter_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
            sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("total_amount >= 0", name="ck_booking_total_amount_positive"),
            sa.CheckConstraint("end_date >= start_date", name="ck_booking_dates_ordered"),
        )

    op.create_table(
        "disputes",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("booking_id", UUID, sa.ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("filed_by_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("reason", sa.String(40), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=False),
        sa.Column("requested_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("resolution", sa.String(30), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("resolved_by_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciliation_reference", sa.Text(), nullable=True),
        sa.Column("reviewed_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("message_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('open', 'under_review', 'resolved', 'closed')",
            name="ck_disputes_status_valid",
        ),
        sa.CheckConstraint(
            "reason IN ('property_not_as_described', 'access_issues', 'payment_dispute', "
            "'early_termination', 'damage_claim', 'safety_concern', "
            "'communication_issues', 'other')",
            name="ck_disputes_reason_valid",
        ),
        sa.CheckConstraint(
            "resolution IS NULL OR resolution IN ('full_refund', 'partial_refund', 'no_refund', "
            "'deposit_returned', 'deposit_forfeited', 'mutual_agreement', 'dismissed')",
            name="ck_disputes_resolution_valid",
        ),
        sa.CheckConstraint(
            "requested_amount IS NULL OR requested_amount >= 0",
            name="ck_disputes_requested_amount_positive",
        ),
        sa.CheckConstraint(
            "resolved_amount IS NULL OR resolved_amount >= 0",
            name="ck_disputes_resolved_amount_positive",
        ),
        sa.CheckConstraint(
            "(status = 'resolved' AND resolution IS NOT NULL AND resolved_amount IS NOT NULL "
            "AND resolved_by_id IS NOT NULL AND resolved_at IS NOT NULL) OR "
            "(status <> 'resolved' AND resolution IS NULL AND resolved_amount IS NULL "
            "AND resolved_by_id IS NULL AND resolved_at IS NULL)",
            name="ck_disputes_resolution_fields_consistent",
        ),
    )
    op.create_index(
        "uq_disputes_active_booking",
        "disputes",
        ["booking_id"],
        unique=True,
        postgresql_where=ACTIVE_STATUS_SQL,
        sqlite_where=ACTIVE_STATUS_SQL,
    )
    op.create_index("ix_disputes_status_created", "disputes", ["status", "created_at"])

    op.create_table(
        "dispute_messages",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("dispute_id", UUID, sa.ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("sender_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("dispute_id", "sequence", name="uq_dispute_messages_sequence"),
    )
    op.create_index(
        "ix_dispute_messages_dispute_created", "dispute_messages", ["dispute_id", "created_at"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("actor_id", UUID, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("dispute_id", UUID, sa.ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_dispute_messages_dispute_created", table_name="dispute_messages")
    op.drop_table("dispute_messages")
    op.drop_index("ix_disputes_status_created", table_name="disputes")
    op.drop_index("uq_disputes_active_booking", table_name="disputes")
    op.drop_table("disputes")
