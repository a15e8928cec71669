import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from plotshare.models.enums import (
    AuditAction,
    BookingStatus,
    DisputeAction,
    DisputeReason,
    DisputeResolution,
    DisputeRole,
    DisputeStatus,
)

# Content limits are enforced by the engine so that every caller gets the same
# InvalidContent error; the Field bounds here only cap request size.
_MAX_TEXT = 20000


class DisputeCreateRequest(BaseModel):
    reason: DisputeReason
    description: str = Field(max_length=_MAX_TEXT)
    evidence: list[str] = Field(default_factory=list, max_length=50)
    requested_amount: Decimal | None = None


class DisputeMessageCreateRequest(BaseModel):
    content: str = Field(max_length=_MAX_TEXT)
    attachments: list[str] = Field(default_factory=list, max_length=50)
    is_internal: bool = False


class DisputeResolveRequest(BaseModel):
    resolution: DisputeResolution
    resolved_amount: Decimal
    notes: str | None = Field(None, max_length=_MAX_TEXT)


class DisputeCloseRequest(BaseModel):
    notes: str | None = Field(None, max_length=_MAX_TEXT)


class DisputeResponse(BaseModel):
    id: uuid.UUID
    booking_id: uuid.UUID
    filed_by_id: uuid.UUID
    reason: DisputeReason
    description: str
    evidence: list[str]
    requested_amount: Decimal | None
    status: DisputeStatus
    resolution: DisputeResolution | None
    resolution_notes: str | None
    resolved_amount: Decimal | None
    resolved_by_id: uuid.UUID | None
    resolved_at: datetime | None
    review_started_at: datetime | None
    closed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DisputeMessageResponse(BaseModel):
    id: uuid.UUID
    dispute_id: uuid.UUID
    sender_id: uuid.UUID
    sender_name: str | None = None
    content: str
    attachments: list[str]
    is_internal: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingSummary(BaseModel):
    id: uuid.UUID
    start_date: date
    end_date: date
    total_amount: Decimal
    status: BookingStatus
    owner_id: uuid.UUID
    renter_id: uuid.UUID

    model_config = {"from_attributes": True}


class DisputeDetailResponse(BaseModel):
    dispute: DisputeResponse
    booking: BookingSummary
    user_role: DisputeRole
    permitted_actions: list[DisputeAction]
    messages: list[DisputeMessageResponse]


class MyDisputeItem(DisputeResponse):
    user_role: DisputeRole
    other_party_id: uuid.UUID | None


class MyDisputeListResponse(BaseModel):
    disputes: list[MyDisputeItem]


class StaffDisputeItem(DisputeResponse):
    message_count: int


class StaffDisputeListResponse(BaseModel):
    disputes: list[StaffDisputeItem]
    total: int
    page: int
    limit: int
    total_pages: int


class DisputeStatsResponse(BaseModel):
    open: int
    under_review: int
    resolved: int
    closed: int
    total: int


class AuditEntryResponse(BaseModel):
    id: uuid.UUID
    action: AuditAction
    actor_id: uuid.UUID | None
    detail: str | None
    metadata_json: dict | None
    created_at: datetime | None

    model_config = {"from_attributes": True}
