"""The resolution transition and its financial reconciliation.

Sequence, all inside the caller's transaction:

1. lock the dispute row and check staff role and the transition;
2. validate the payload against the booking total fetched now;
3. claim the dispute (versioned flush) so a racing writer fails;
4. call the reconciliation service once, bounded by a timeout;
5. write the resolution fields (second versioned flush).

Any failure raises before the terminal state is written, and the request
transaction is rolled back by ``get_db``.
"""

import asyncio
import time as _time
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.config import settings
from plotshare.exceptions import NotFound, ReconciliationFailed
from plotshare.metrics import DISPUTES_RESOLVED, RECONCILIATION_DURATION, RECONCILIATION_FAILURES
from plotshare.models.dispute import Dispute
from plotshare.models.enums import AuditAction, DisputeAction, DisputeEvent, DisputeResolution, DisputeStatus
from plotshare.services.bookings import BookingProvider
from plotshare.services.disputes import flush_versioned, load_for_write, record_audit
from plotshare.services.identity import IdentityProvider
from plotshare.services.notifications import Notifier, notification_dispatcher
from plotshare.services.reconciliation import ReconciliationService, StripeReconciliationService
from plotshare.utils.dispute_state import validate_resolution_payload, validate_transition
from plotshare.utils.validators import clean_text

logger = structlog.get_logger()


def idempotency_key(dispute_id: uuid.UUID) -> str:
    return f"dispute_resolution_{dispute_id}"


async def _reconcile(
    reconciliation: ReconciliationService,
    dispute: Dispute,
    amount: Decimal,
    kind: DisputeResolution,
) -> str | None:
    """Run the reconciliation call; returns the external reference on success."""
    start = _time.monotonic()
    try:
        result = await asyncio.wait_for(
            reconciliation.apply_resolution(
                dispute.booking_id, amount, kind, idempotency_key(dispute.id)
            ),
            timeout=settings.RECONCILIATION_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        RECONCILIATION_FAILURES.labels(cause="timeout").inc()
        logger.error(
            "reconciliation_timeout",
            dispute_id=str(dispute.id),
            timeout=settings.RECONCILIATION_TIMEOUT_SECONDS,
        )
        raise ReconciliationFailed("Reconciliation timed out") from None
    except Exception as exc:
        RECONCILIATION_FAILURES.labels(cause="error").inc()
        logger.exception("reconciliation_error", dispute_id=str(dispute.id))
        raise ReconciliationFailed(f"Reconciliation error: {exc}") from exc
    finally:
        RECONCILIATION_DURATION.observe(_time.monotonic() - start)

    if not result.ok:
        RECONCILIATION_FAILURES.labels(cause="rejected").inc()
        logger.warning("reconciliation_rejected", dispute_id=str(dispute.id), reason=result.reason)
        raise ReconciliationFailed(f"Reconciliation rejected: {result.reason or 'unknown reason'}")
    return result.reference


async def resolve_dispute(
    db: AsyncSession,
    actor_id: uuid.UUID,
    dispute_id: uuid.UUID,
    resolution: DisputeResolution | str,
    resolved_amount,
    notes: str | None = None,
    *,
    bookings: BookingProvider | None = None,
    identity: IdentityProvider | None = None,
    reconciliation: ReconciliationService | None = None,
    notifier: Notifier = notification_dispatcher,
) -> Dispute:
    """OPEN|UNDER_REVIEW -> RESOLVED (staff only), exactly once per dispute."""
    bookings = bookings or BookingProvider(db)
    reconciliation = reconciliation or StripeReconciliationService(bookings)

    ctx = await load_for_write(
        db, actor_id, dispute_id, DisputeAction.RESOLVE, bookings=bookings, identity=identity
    )
    dispute = ctx.dispute
    validate_transition(dispute.status, DisputeStatus.RESOLVED)

    # Cross-check against the booking as it is now, not as it was at filing
    booking = await bookings.get_booking(dispute.booking_id)
    if booking is None:
        raise NotFound("Booking")
    kind, amount = validate_resolution_payload(resolution, resolved_amount, booking.total_amount)
    notes = clean_text(notes, "notes", settings.DISPUTE_MAX_NOTES_LENGTH, required=False)

    # Claim: bumps the version so a concurrent resolver holding the old row loses
    dispute.updated_at = datetime.now(timezone.utc)
    await flush_versioned(db, "resolve_claim")

    reference = await _reconcile(reconciliation, dispute, amount, kind)

    dispute.status = DisputeStatus.RESOLVED
    dispute.resolution = kind
    dispute.resolved_amount = amount
    dispute.resolution_notes = notes
    dispute.resolved_by_id = actor_id
    dispute.resolved_at = datetime.now(timezone.utc)
    dispute.reconciliation_reference = reference
    await flush_versioned(db, "resolve")

    record_audit(
        db,
        AuditAction.RESOLVED,
        dispute,
        actor_id,
        detail=notes,
        metadata={
            "resolution": kind.value,
            "resolved_amount": str(amount),
            "booking_total": str(booking.total_amount),
            "reconciliation_reference": reference,
        },
    )
    await db.flush()

    DISPUTES_RESOLVED.labels(resolution=kind.value).inc()
    logger.info(
        "dispute_resolved",
        dispute_id=str(dispute.id),
        booking_id=str(dispute.booking_id),
        staff_id=str(actor_id),
        resolution=kind.value,
        resolved_amount=str(amount),
    )
    notifier.dispatch(
        DisputeEvent.RESOLVED,
        [booking.owner_id, booking.renter_id],
        {
            "dispute_id": str(dispute.id),
            "booking_id": str(dispute.booking_id),
            "status": DisputeStatus.RESOLVED.value,
            "resolution": kind.value,
            "resolved_amount": str(amount),
        },
    )
    return dispute
