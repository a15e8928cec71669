import math
import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from plotshare.database import get_db
from plotshare.dependencies import (
    get_booking_provider,
    get_current_user_id,
    get_identity_provider,
    get_notification_dispatcher,
    get_reconciliation_service,
)
from plotshare.exceptions import InvalidContent
from plotshare.models.enums import DisputeStatus
from plotshare.schemas.dispute import (
    AuditEntryResponse,
    DisputeCloseRequest,
    DisputeResolveRequest,
    DisputeResponse,
    DisputeStatsResponse,
    StaffDisputeItem,
    StaffDisputeListResponse,
)
from plotshare.services import disputes
from plotshare.services.bookings import BookingProvider
from plotshare.services.identity import IdentityProvider
from plotshare.services.notifications import Notifier
from plotshare.services.reconciliation import ReconciliationService
from plotshare.services.resolution import resolve_dispute
from plotshare.utils.rate_limit import STAFF_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


# --- 1. Dispute queue ---


@router.get("/disputes", response_model=StaffDisputeListResponse)
@limiter.limit(STAFF_RATE_LIMIT)
async def list_disputes(
    request: Request,
    dispute_status: str = Query("all", alias="status"),
    page: int = Query(1, ge=1, le=10000),
    limit: int = Query(20, ge=1, le=100),
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """List all disputes, newest first, with their message counts."""
    status_filter = None
    if dispute_status != "all":
        try:
            status_filter = DisputeStatus(dispute_status)
        except ValueError:
            raise InvalidContent(f"Invalid status: {dispute_status}") from None

    rows, total = await disputes.list_all_disputes(
        db, actor_id, status=status_filter, page=page, limit=limit, identity=identity
    )
    return StaffDisputeListResponse(
        disputes=[
            StaffDisputeItem(
                **DisputeResponse.model_validate(dispute).model_dump(),
                message_count=count,
            )
            for dispute, count in rows
        ],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


# --- 2. Dashboard counts ---


@router.get("/disputes/stats", response_model=DisputeStatsResponse)
@limiter.limit(STAFF_RATE_LIMIT)
async def dispute_stats(
    request: Request,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    counts = await disputes.dispute_status_counts(db, actor_id, identity=identity)
    return DisputeStatsResponse(**counts, total=sum(counts.values()))


# --- 3. Transitions ---


@router.post("/disputes/{dispute_id}/review", response_model=DisputeResponse)
@limiter.limit(STAFF_RATE_LIMIT)
async def start_review(
    request: Request,
    dispute_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notification_dispatcher),
):
    """Move an open dispute under review."""
    return await disputes.start_review(
        db, actor_id, dispute_id, bookings=bookings, identity=identity, notifier=notifier
    )


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
@limiter.limit(STAFF_RATE_LIMIT)
async def resolve(
    request: Request,
    dispute_id: uuid.UUID,
    body: DisputeResolveRequest,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    notifier: Notifier = Depends(get_notification_dispatcher),
):
    """Resolve a dispute and apply its financial outcome. One-shot."""
    return await resolve_dispute(
        db,
        actor_id,
        dispute_id,
        body.resolution,
        body.resolved_amount,
        body.notes,
        bookings=bookings,
        identity=identity,
        reconciliation=reconciliation,
        notifier=notifier,
    )


@router.post("/disputes/{dispute_id}/close", response_model=DisputeResponse)
@limiter.limit(STAFF_RATE_LIMIT)
async def close(
    request: Request,
    dispute_id: uuid.UUID,
    body: DisputeCloseRequest,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notification_dispatcher),
):
    """Close a withdrawn or invalid dispute without a financial outcome."""
    return await disputes.close_dispute(
        db, actor_id, dispute_id, body.notes, bookings=bookings, identity=identity, notifier=notifier
    )


# --- 4. Audit trail ---


@router.get("/disputes/{dispute_id}/audit", response_model=list[AuditEntryResponse])
@limiter.limit(STAFF_RATE_LIMIT)
async def dispute_audit_trail(
    request: Request,
    dispute_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Staff actions recorded on a dispute, oldest first."""
    return await disputes.list_audit_trail(db, actor_id, dispute_id, bookings=bookings, identity=identity)
