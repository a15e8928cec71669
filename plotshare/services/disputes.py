"""Dispute store operations: filing, lookup, listing and the staff-only
status transitions that carry no financial payload (review, close).

Every function takes the acting user explicitly as ``actor_id``.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from plotshare.config import settings
from plotshare.exceptions import (
    ConcurrencyConflict,
    DisputeAlreadyOpen,
    InvalidContent,
    NotAuthorized,
    NotFound,
)
from plotshare.metrics import CONCURRENCY_CONFLICTS, DISPUTES_CLOSED, DISPUTES_FILED
from plotshare.models.audit_log import AuditLog
from plotshare.models.booking import Booking
from plotshare.models.dispute import Dispute
from plotshare.models.dispute_message import DisputeMessage
from plotshare.models.enums import (
    ACTIVE_DISPUTE_STATUSES,
    AuditAction,
    BookingStatus,
    DisputeAction,
    DisputeEvent,
    DisputeReason,
    DisputeRole,
    DisputeStatus,
)
from plotshare.services.bookings import BookingProvider, BookingSnapshot
from plotshare.services.dispute_access import ensure_allowed, ensure_visible, permitted_actions, resolve_role
from plotshare.services.identity import IdentityProvider
from plotshare.services.notifications import Notifier, notification_dispatcher
from plotshare.utils.dispute_state import parse_amount, validate_transition
from plotshare.utils.validators import clean_text, validate_attachment_refs

logger = structlog.get_logger()

AUTO_CLOSE_NOTE = "Booking was cancelled; dispute closed automatically."

ROLE_FILTERS = ("all", "filed", "received")

# PostgreSQL lock_not_available, raised by SELECT ... FOR UPDATE NOWAIT
LOCK_NOT_AVAILABLE = "55P03"


@dataclass
class DisputeContext:
    """A dispute as seen by one actor."""

    dispute: Dispute
    booking: BookingSnapshot
    role: DisputeRole

    @property
    def actions(self):
        return permitted_actions(self.role, self.dispute.status)


@dataclass
class DisputeSummary:
    dispute: Dispute
    role: DisputeRole
    other_party_id: uuid.UUID | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_lock_unavailable(exc: DBAPIError) -> bool:
    """True for NOWAIT lock contention (SQLSTATE 55P03).

    asyncpg errors reach us as a generic DBAPIError carrying the code on the
    adapted error or on the original asyncpg exception.
    """
    for err in (exc.orig, getattr(exc.orig, "__cause__", None)):
        if err is None:
            continue
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code == LOCK_NOT_AVAILABLE:
            return True
    return False


async def _fetch_dispute(db: AsyncSession, dispute_id: uuid.UUID, *, lock: bool) -> Dispute | None:
    stmt = select(Dispute).where(Dispute.id == dispute_id).execution_options(populate_existing=True)
    if lock:
        # Fail fast instead of queueing behind another writer of the same dispute
        stmt = stmt.with_for_update(nowait=True)
    try:
        result = await db.execute(stmt)
    except DBAPIError as exc:
        if not _is_lock_unavailable(exc):
            raise
        CONCURRENCY_CONFLICTS.labels(operation="lock").inc()
        raise ConcurrencyConflict() from None
    return result.scalar_one_or_none()


async def load_context(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    lock: bool = False,
) -> DisputeContext:
    """Fetch a dispute, its booking and the actor's role.

    Raises NotFound both for missing disputes and for actors with role NONE.
    """
    bookings = bookings or BookingProvider(db)
    identity = identity or IdentityProvider(db)

    dispute = await _fetch_dispute(db, dispute_id, lock=lock)
    if dispute is None:
        raise NotFound("Dispute")
    booking = await bookings.get_booking(dispute.booking_id)
    if booking is None:
        raise NotFound("Dispute")

    is_staff = await identity.has_staff_capability(actor_id)
    role = resolve_role(actor_id, dispute.filed_by_id, booking, is_staff)
    ensure_visible(role)
    return DisputeContext(dispute=dispute, booking=booking, role=role)


async def load_for_write(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    action: DisputeAction,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
) -> DisputeContext:
    """Lock a dispute for a status change and check the actor may perform ``action``."""
    ctx = await load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity, lock=True)
    ensure_allowed(ctx.role, action)
    return ctx


async def flush_versioned(db: AsyncSession, operation: str) -> None:
    """Flush pending dispute changes, translating a lost version race."""
    try:
        await db.flush()
    except StaleDataError:
        CONCURRENCY_CONFLICTS.labels(operation=operation).inc()
        logger.warning("dispute_concurrency_conflict", operation=operation)
        raise ConcurrencyConflict() from None


def record_audit(
    db: AsyncSession,
    action: AuditAction,
    dispute: Dispute,
    actor_id: uuid.UUID | None,
    detail: str | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        dispute_id=dispute.id,
        detail=detail,
        metadata_json=metadata,
    )
    db.add(entry)
    return entry


def _event_data(dispute: Dispute) -> dict:
    return {
        "dispute_id": str(dispute.id),
        "booking_id": str(dispute.booking_id),
        "status": DisputeStatus(dispute.status).value,
    }


# ---------------------------------------------------------------------------
# Filing and reads
# ---------------------------------------------------------------------------


async def file_dispute(
    db: AsyncSession,
    actor_id: uuid.UUID,
    booking_id: uuid.UUID,
    *,
    reason: DisputeReason | str,
    description: str,
    evidence: list[str] | None = None,
    requested_amount: Decimal | str | None = None,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    notifier: Notifier = notification_dispatcher,
) -> Dispute:
    """Open a dispute on a booking the actor is the owner or renter of."""
    bookings = bookings or BookingProvider(db)
    identity = identity or IdentityProvider(db)

    booking = await bookings.get_booking(booking_id)
    if booking is None:
        raise NotFound("Booking")
    if not booking.is_party(actor_id):
        if await identity.has_staff_capability(actor_id):
            raise NotAuthorized("Only the owner or the renter of a booking can file a dispute")
        raise NotFound("Booking")

    try:
        reason_enum = DisputeReason(reason)
    except ValueError:
        raise InvalidContent(f"Invalid dispute reason: {reason}") from None
    description = clean_text(description, "description", settings.DISPUTE_MAX_DESCRIPTION_LENGTH)
    evidence = validate_attachment_refs(evidence, field="evidence")

    amount = None
    if requested_amount is not None:
        amount = parse_amount(requested_amount, error_cls=InvalidContent, field="requested_amount")
        if amount > booking.total_amount:
            raise InvalidContent(
                f"requested_amount {amount} exceeds the booking total {booking.total_amount}"
            )

    existing = await db.execute(
        select(Dispute.id).where(
            Dispute.booking_id == booking.id,
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        )
    )
    if existing.first() is not None:
        raise DisputeAlreadyOpen()

    dispute = Dispute(
        booking_id=booking.id,
        filed_by_id=actor_id,
        reason=reason_enum,
        description=description,
        evidence=evidence,
        requested_amount=amount,
        status=DisputeStatus.OPEN,
    )
    db.add(dispute)
    try:
        await db.flush()
    except IntegrityError:
        # Lost the race against another filer on the partial unique index
        raise DisputeAlreadyOpen() from None

    DISPUTES_FILED.labels(reason=reason_enum.value).inc()
    logger.info(
        "dispute_filed",
        dispute_id=str(dispute.id),
        booking_id=str(booking.id),
        filed_by=str(actor_id),
        reason=reason_enum.value,
    )
    notifier.dispatch(DisputeEvent.FILED, [booking.other_party(actor_id)], _event_data(dispute))
    return dispute


async def get_dispute_for_booking(
    db: AsyncSession,
    actor_id: uuid.UUID,
    booking_id: uuid.UUID,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
) -> DisputeContext:
    """Most recent dispute of a booking, visible to its parties and staff."""
    bookings = bookings or BookingProvider(db)
    identity = identity or IdentityProvider(db)

    booking = await bookings.get_booking(booking_id)
    if booking is None:
        raise NotFound("Dispute")
    if not booking.is_party(actor_id) and not await identity.has_staff_capability(actor_id):
        raise NotFound("Dispute")

    result = await db.execute(
        select(Dispute.id)
        .where(Dispute.booking_id == booking.id)
        .order_by(Dispute.created_at.desc())
        .limit(1)
    )
    dispute_id = result.scalar_one_or_none()
    if dispute_id is None:
        raise NotFound("Dispute")
    return await load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity)


async def list_disputes_for_user(
    db: AsyncSession,
    actor_id: uuid.UUID,
    *,
    status: DisputeStatus | None = None,
    role_filter: str = "all",
) -> list[DisputeSummary]:
    """Disputes the actor is a party to, newest first.

    ``role_filter``: ``filed`` (opened by the actor), ``received`` (opened by
    the other party) or ``all``.
    """
    if role_filter not in ROLE_FILTERS:
        raise InvalidContent(f"Invalid role filter: {role_filter}")

    is_party = or_(Booking.owner_id == actor_id, Booking.renter_id == actor_id)
    stmt = select(Dispute, Booking.owner_id, Booking.renter_id).join(Booking, Dispute.booking_id == Booking.id)
    if role_filter == "filed":
        stmt = stmt.where(Dispute.filed_by_id == actor_id)
    elif role_filter == "received":
        stmt = stmt.where(and_(Dispute.filed_by_id != actor_id, is_party))
    else:
        stmt = stmt.where(or_(Dispute.filed_by_id == actor_id, is_party))
    if status is not None:
        stmt = stmt.where(Dispute.status == DisputeStatus(status))
    stmt = stmt.order_by(Dispute.created_at.desc())

    result = await db.execute(stmt)
    summaries = []
    for dispute, owner_id, renter_id in result.all():
        if dispute.filed_by_id == actor_id:
            role = DisputeRole.FILER
            other = renter_id if actor_id == owner_id else owner_id
        else:
            role = DisputeRole.COUNTERPARTY
            other = dispute.filed_by_id
        summaries.append(DisputeSummary(dispute=dispute, role=role, other_party_id=other))
    return summaries


async def _require_staff(db: AsyncSession, actor_id: uuid.UUID, identity: IdentityProvider | None) -> None:
    identity = identity or IdentityProvider(db)
    if not await identity.has_staff_capability(actor_id):
        raise NotAuthorized("Staff access required")


async def list_all_disputes(
    db: AsyncSession,
    actor_id: uuid.UUID,
    *,
    status: DisputeStatus | None = None,
    page: int = 1,
    limit: int = 20,
    identity: IdentityProvider | None = None,
) -> tuple[list[tuple[Dispute, int]], int]:
    """Staff queue: every dispute with its message count, newest first."""
    await _require_staff(db, actor_id, identity)

    message_counts = (
        select(DisputeMessage.dispute_id, func.count(DisputeMessage.id).label("message_count"))
        .group_by(DisputeMessage.dispute_id)
        .subquery()
    )
    stmt = (
        select(Dispute, func.coalesce(message_counts.c.message_count, 0))
        .outerjoin(message_counts, message_counts.c.dispute_id == Dispute.id)
    )
    count_stmt = select(func.count(Dispute.id))
    if status is not None:
        stmt = stmt.where(Dispute.status == DisputeStatus(status))
        count_stmt = count_stmt.where(Dispute.status == DisputeStatus(status))

    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(
        stmt.order_by(Dispute.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return [(dispute, int(count)) for dispute, count in result.all()], total


async def dispute_status_counts(
    db: AsyncSession,
    actor_id: uuid.UUID,
    *,
    identity: IdentityProvider | None = None,
) -> dict[str, int]:
    await _require_staff(db, actor_id, identity)
    result = await db.execute(select(Dispute.status, func.count(Dispute.id)).group_by(Dispute.status))
    counts = {s.value: 0 for s in DisputeStatus}
    for status, count in result.all():
        counts[DisputeStatus(status).value] = count
    return counts


# ---------------------------------------------------------------------------
# Staff transitions without a financial payload
# ---------------------------------------------------------------------------


async def start_review(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    notifier: Notifier = notification_dispatcher,
) -> Dispute:
    """OPEN -> UNDER_REVIEW (staff only)."""
    ctx = await load_for_write(
        db, actor_id, dispute_id, DisputeAction.START_REVIEW, bookings=bookings, identity=identity
    )
    dispute = ctx.dispute
    validate_transition(dispute.status, DisputeStatus.UNDER_REVIEW)

    dispute.status = DisputeStatus.UNDER_REVIEW
    dispute.reviewed_by_id = actor_id
    dispute.review_started_at = datetime.now(timezone.utc)
    await flush_versioned(db, "start_review")

    record_audit(db, AuditAction.REVIEW_STARTED, dispute, actor_id)
    await db.flush()
    logger.info("dispute_review_started", dispute_id=str(dispute.id), staff_id=str(actor_id))
    notifier.dispatch(
        DisputeEvent.UNDER_REVIEW,
        [ctx.booking.owner_id, ctx.booking.renter_id],
        _event_data(dispute),
    )
    return dispute


async def close_dispute(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    notes: str | None = None,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    notifier: Notifier = notification_dispatcher,
) -> Dispute:
    """OPEN|UNDER_REVIEW -> CLOSED (staff only), for withdrawn or invalid disputes."""
    ctx = await load_for_write(
        db, actor_id, dispute_id, DisputeAction.CLOSE, bookings=bookings, identity=identity
    )
    dispute = ctx.dispute
    validate_transition(dispute.status, DisputeStatus.CLOSED)
    notes = clean_text(notes, "notes", settings.DISPUTE_MAX_NOTES_LENGTH, required=False)

    dispute.status = DisputeStatus.CLOSED
    dispute.resolution_notes = notes
    dispute.closed_by_id = actor_id
    dispute.closed_at = datetime.now(timezone.utc)
    await flush_versioned(db, "close")

    record_audit(db, AuditAction.CLOSED, dispute, actor_id, detail=notes)
    await db.flush()
    DISPUTES_CLOSED.labels(closed_by="staff").inc()
    logger.info("dispute_closed", dispute_id=str(dispute.id), staff_id=str(actor_id))
    notifier.dispatch(
        DisputeEvent.CLOSED,
        [ctx.booking.owner_id, ctx.booking.renter_id],
        _event_data(dispute),
    )
    return dispute


async def close_disputes_for_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    note: str = AUTO_CLOSE_NOTE,
    bookings: BookingProvider | None = None,
    notifier: Notifier = notification_dispatcher,
) -> list[Dispute]:
    """Close every non-terminal dispute of a cancelled booking (system action).

    Returns the disputes that were closed; an empty list if the booking is not
    cancelled or has nothing open.
    """
    bookings = bookings or BookingProvider(db)
    booking = await bookings.get_booking(booking_id)
    if booking is None or booking.status != BookingStatus.CANCELLED:
        return []

    result = await db.execute(
        select(Dispute)
        .where(
            Dispute.booking_id == booking_id,
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        )
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    closed = []
    for dispute in result.scalars().all():
        validate_transition(dispute.status, DisputeStatus.CLOSED)
        dispute.status = DisputeStatus.CLOSED
        dispute.resolution_notes = note
        dispute.closed_at = datetime.now(timezone.utc)
        await flush_versioned(db, "auto_close")
        record_audit(db, AuditAction.AUTO_CLOSED, dispute, None, detail=note)
        closed.append(dispute)

    if closed:
        await db.flush()
        DISPUTES_CLOSED.labels(closed_by="system").inc(len(closed))
        for dispute in closed:
            logger.info("dispute_auto_closed", dispute_id=str(dispute.id), booking_id=str(booking_id))
            notifier.dispatch(
                DisputeEvent.CLOSED,
                [booking.owner_id, booking.renter_id],
                _event_data(dispute),
            )
    return closed


async def find_cancelled_bookings_with_open_disputes(db: AsyncSession, limit: int) -> list[uuid.UUID]:
    result = await db.execute(
        select(Dispute.booking_id)
        .join(Booking, Dispute.booking_id == Booking.id)
        .where(
            Booking.status == BookingStatus.CANCELLED,
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
        )
        .distinct()
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_audit_trail(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
) -> list[AuditLog]:
    """Staff actions on a dispute, oldest first. Staff only."""
    ctx = await load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity)
    ensure_allowed(ctx.role, DisputeAction.READ_INTERNAL)
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.dispute_id == ctx.dispute.id)
        .order_by(AuditLog.created_at.asc())
    )
    return list(result.scalars().all())
