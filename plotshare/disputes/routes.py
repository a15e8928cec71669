import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from plotshare.database import get_db
from plotshare.dependencies import (
    get_booking_provider,
    get_current_user_id,
    get_identity_provider,
    get_notification_dispatcher,
)
from plotshare.models.dispute_message import DisputeMessage
from plotshare.models.enums import DisputeRole, DisputeStatus
from plotshare.schemas.dispute import (
    BookingSummary,
    DisputeCreateRequest,
    DisputeDetailResponse,
    DisputeMessageCreateRequest,
    DisputeMessageResponse,
    DisputeResponse,
    MyDisputeItem,
    MyDisputeListResponse,
)
from plotshare.services import dispute_messages, disputes
from plotshare.services.bookings import BookingProvider
from plotshare.services.identity import IdentityProvider
from plotshare.services.notifications import Notifier
from plotshare.utils.display_name import get_display_name
from plotshare.utils.rate_limit import DISPUTE_WRITE_RATE_LIMIT, LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter(tags=["disputes"])


async def serialize_messages(
    messages: list[DisputeMessage],
    identity: IdentityProvider,
) -> list[DisputeMessageResponse]:
    """Attach display names; staff senders appear under the support label."""
    users = await identity.get_users(m.sender_id for m in messages)
    out = []
    for m in messages:
        is_staff = await identity.has_staff_capability(m.sender_id)
        item = DisputeMessageResponse.model_validate(m)
        item.sender_name = get_display_name(users.get(m.sender_id), as_staff=is_staff)
        out.append(item)
    return out


async def build_detail(
    db: AsyncSession,
    ctx: disputes.DisputeContext,
    identity: IdentityProvider,
) -> DisputeDetailResponse:
    messages = await dispute_messages.fetch_visible_messages(
        db, ctx.dispute.id, include_internal=ctx.role == DisputeRole.STAFF
    )
    return DisputeDetailResponse(
        dispute=DisputeResponse.model_validate(ctx.dispute),
        booking=BookingSummary.model_validate(ctx.booking),
        user_role=ctx.role,
        permitted_actions=sorted(ctx.actions, key=lambda a: a.value),
        messages=await serialize_messages(messages, identity),
    )


@router.post(
    "/bookings/{booking_id}/disputes",
    response_model=DisputeResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(DISPUTE_WRITE_RATE_LIMIT)
async def create_dispute(
    request: Request,
    booking_id: uuid.UUID,
    body: DisputeCreateRequest,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notification_dispatcher),
):
    """File a dispute on a booking the caller is the owner or renter of."""
    dispute = await disputes.file_dispute(
        db,
        actor_id,
        booking_id,
        reason=body.reason,
        description=body.description,
        evidence=body.evidence,
        requested_amount=body.requested_amount,
        bookings=bookings,
        identity=identity,
        notifier=notifier,
    )
    return dispute


@router.get("/bookings/{booking_id}/dispute", response_model=DisputeDetailResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def get_booking_dispute(
    request: Request,
    booking_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Most recent dispute of a booking, with its visible messages."""
    ctx = await disputes.get_dispute_for_booking(
        db, actor_id, booking_id, bookings=bookings, identity=identity
    )
    return await build_detail(db, ctx, identity)


@router.get("/disputes", response_model=MyDisputeListResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_disputes(
    request: Request,
    dispute_status: DisputeStatus | None = Query(None, alias="status"),
    role: str = Query("all", pattern="^(all|filed|received)$"),
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Disputes the caller filed or received, newest first."""
    summaries = await disputes.list_disputes_for_user(
        db, actor_id, status=dispute_status, role_filter=role
    )
    items = [
        MyDisputeItem(
            **DisputeResponse.model_validate(s.dispute).model_dump(),
            user_role=s.role,
            other_party_id=s.other_party_id,
        )
        for s in summaries
    ]
    return MyDisputeListResponse(disputes=items)


@router.get("/disputes/{dispute_id}", response_model=DisputeDetailResponse)
@limiter.limit(LIST_RATE_LIMIT)
async def get_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    ctx = await disputes.load_context(db, actor_id, dispute_id, bookings=bookings, identity=identity)
    return await build_detail(db, ctx, identity)


@router.get("/disputes/{dispute_id}/messages", response_model=list[DisputeMessageResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_dispute_messages(
    request: Request,
    dispute_id: uuid.UUID,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    messages = await dispute_messages.list_messages(
        db, actor_id, dispute_id, bookings=bookings, identity=identity
    )
    return await serialize_messages(messages, identity)


@router.post(
    "/disputes/{dispute_id}/messages",
    response_model=DisputeMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(DISPUTE_WRITE_RATE_LIMIT)
async def post_dispute_message(
    request: Request,
    dispute_id: uuid.UUID,
    body: DisputeMessageCreateRequest,
    actor_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    bookings: BookingProvider = Depends(get_booking_provider),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notification_dispatcher),
):
    """Append a message to the dispute thread. ``is_internal`` is staff-only."""
    message = await dispute_messages.append_message(
        db,
        actor_id,
        dispute_id,
        body.content,
        attachments=body.attachments,
        is_internal=body.is_internal,
        bookings=bookings,
        identity=identity,
        notifier=notifier,
    )
    return (await serialize_messages([message], identity))[0]
