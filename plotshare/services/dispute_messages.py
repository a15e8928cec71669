"""Dispute message thread: append-only, with staff-only internal messages."""

import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.config import settings
from plotshare.exceptions import DisputeClosed, NotAuthorized
from plotshare.metrics import DISPUTE_MESSAGES_POSTED
from plotshare.models.dispute import Dispute
from plotshare.models.dispute_message import DisputeMessage
from plotshare.models.enums import ACTIVE_DISPUTE_STATUSES, DisputeAction, DisputeEvent, DisputeRole
from plotshare.services.bookings import BookingProvider
from plotshare.services.dispute_access import ensure_allowed
from plotshare.services.disputes import load_context
from plotshare.services.identity import IdentityProvider
from plotshare.services.notifications import Notifier, notification_dispatcher
from plotshare.utils.dispute_state import is_terminal
from plotshare.utils.validators import clean_text, validate_attachment_refs

logger = structlog.get_logger()


async def _reserve_sequence(db: AsyncSession, dispute_id: uuid.UUID) -> int | None:
    """Atomically hand out the next message sequence of a non-terminal dispute.

    Returns None when the dispute is resolved or closed. Does not touch the
    version column, so concurrent appends never conflict with each other.
    """
    result = await db.execute(
        update(Dispute.__table__)
        .where(
            Dispute.__table__.c.id == dispute_id,
            Dispute.__table__.c.status.in_([s.value for s in ACTIVE_DISPUTE_STATUSES]),
        )
        .values(message_seq=Dispute.__table__.c.message_seq + 1)
        .returning(Dispute.__table__.c.message_seq)
    )
    return result.scalar_one_or_none()


async def append_message(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    content: str,
    attachments: list[str] | None = None,
    is_internal: bool = False,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    notifier: Notifier = notification_dispatcher,
) -> DisputeMessage:
    """Append a message to a dispute thread.

    Non-staff actors asking for an internal message are rejected rather than
    downgraded to a shared one.
    """
    ctx = await load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity)
    if is_internal:
        if ctx.role != DisputeRole.STAFF:
            raise NotAuthorized("Only staff can post internal messages")
        ensure_allowed(ctx.role, DisputeAction.POST_INTERNAL_MESSAGE)
    else:
        ensure_allowed(ctx.role, DisputeAction.POST_MESSAGE)

    if is_terminal(ctx.dispute.status):
        raise DisputeClosed()

    content = clean_text(content, "content", settings.DISPUTE_MAX_MESSAGE_LENGTH)
    attachments = validate_attachment_refs(attachments)

    sequence = await _reserve_sequence(db, ctx.dispute.id)
    if sequence is None:
        # Became terminal after we read it
        raise DisputeClosed()

    message = DisputeMessage(
        dispute_id=ctx.dispute.id,
        sender_id=actor_id,
        content=content,
        attachments=attachments,
        is_internal=bool(is_internal),
        sequence=sequence,
    )
    db.add(message)
    await db.flush()

    visibility = "internal" if message.is_internal else "shared"
    DISPUTE_MESSAGES_POSTED.labels(visibility=visibility).inc()
    logger.info(
        "dispute_message_posted",
        dispute_id=str(ctx.dispute.id),
        sender_id=str(actor_id),
        visibility=visibility,
        sequence=sequence,
    )

    if not message.is_internal:
        recipients = {ctx.booking.owner_id, ctx.booking.renter_id} - {actor_id}
        notifier.dispatch(
            DisputeEvent.MESSAGE,
            recipients,
            {
                "dispute_id": str(ctx.dispute.id),
                "booking_id": str(ctx.booking.id),
                "message_id": str(message.id),
            },
        )
    return message


async def fetch_visible_messages(
    db: AsyncSession, dispute_id: uuid.UUID, include_internal: bool
) -> list[DisputeMessage]:
    stmt = select(DisputeMessage).where(DisputeMessage.dispute_id == dispute_id)
    if not include_internal:
        stmt = stmt.where(DisputeMessage.is_internal.is_(False))
    stmt = stmt.order_by(DisputeMessage.created_at.asc(), DisputeMessage.sequence.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_messages(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
) -> list[DisputeMessage]:
    """Messages of a dispute in creation order; internal ones only for staff."""
    ctx = await load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity)
    ensure_allowed(ctx.role, DisputeAction.READ)
    return await fetch_visible_messages(
        db, ctx.dispute.id, include_internal=ctx.role == DisputeRole.STAFF
    )
