"""HTTP-level tests: routing, authentication and error-kind mapping."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient

from plotshare.services.reconciliation import ReconciliationResult
from tests.conftest import auth_header, make_token


# ============ authentication ============


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client: AsyncClient):
    resp = await client.get("/disputes", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_expired_and_refresh_tokens_are_rejected(client: AsyncClient, renter):
    expired = make_token(renter, exp=datetime.now(timezone.utc) - timedelta(minutes=1))
    refresh = make_token(renter, type="refresh")
    for token in (expired, refresh):
        resp = await client.get("/disputes", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_is_rejected(client: AsyncClient, db, renter):
    renter.is_active = False
    await db.flush()
    resp = await client.get("/disputes", headers=auth_header(renter))
    assert resp.status_code == 401


# ============ filing ============


@pytest.mark.asyncio
async def test_file_dispute(client: AsyncClient, booking, renter, notifier):
    resp = await client.post(
        f"/bookings/{booking.id}/disputes",
        json={
            "reason": "access_issues",
            "description": "The gate has been padlocked for a week.",
            "evidence": ["https://cdn.example/gate.jpg"],
            "requested_amount": "120.00",
        },
        headers=auth_header(renter),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "open"
    assert body["filed_by_id"] == str(renter.id)
    assert Decimal(body["requested_amount"]) == Decimal("120.00")
    notifier.dispatch.assert_called_once()


@pytest.mark.asyncio
async def test_duplicate_filing_is_conflict(client: AsyncClient, dispute, booking, owner):
    resp = await client.post(
        f"/bookings/{booking.id}/disputes",
        json={"reason": "other", "description": "Renter left rubbish everywhere."},
        headers=auth_header(owner),
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "dispute_already_open"
    assert resp.json()["retriable"] is False


@pytest.mark.asyncio
async def test_stranger_filing_is_not_found(client: AsyncClient, booking, stranger):
    resp = await client.post(
        f"/bookings/{booking.id}/disputes",
        json={"reason": "other", "description": "I am not part of this booking."},
        headers=auth_header(stranger),
    )
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_blank_description_is_invalid_content(client: AsyncClient, booking, renter):
    resp = await client.post(
        f"/bookings/{booking.id}/disputes",
        json={"reason": "other", "description": "    "},
        headers=auth_header(renter),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_content"


# ============ reads ============


@pytest.mark.asyncio
async def test_dispute_detail_for_party(client: AsyncClient, dispute, booking, owner):
    resp = await client.get(f"/disputes/{dispute.id}", headers=auth_header(owner))
    assert resp.status_code == 200
    body = resp.json()
    assert body["dispute"]["id"] == str(dispute.id)
    assert body["booking"]["id"] == str(booking.id)
    assert body["user_role"] == "counterparty"
    assert sorted(body["permitted_actions"]) == ["post_message", "read"]
    assert body["messages"] == []


@pytest.mark.asyncio
async def test_booking_dispute_lookup(client: AsyncClient, dispute, booking, renter, stranger):
    resp = await client.get(f"/bookings/{booking.id}/dispute", headers=auth_header(renter))
    assert resp.status_code == 200
    assert resp.json()["user_role"] == "filer"

    resp = await client.get(f"/bookings/{booking.id}/dispute", headers=auth_header(stranger))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stranger_and_unknown_look_the_same(client: AsyncClient, dispute, stranger):
    hidden = await client.get(f"/disputes/{dispute.id}", headers=auth_header(stranger))
    missing = await client.get(f"/disputes/{uuid.uuid4()}", headers=auth_header(stranger))
    assert hidden.status_code == missing.status_code == 404
    assert hidden.json() == missing.json()


@pytest.mark.asyncio
async def test_my_disputes_with_role_filter(client: AsyncClient, dispute, renter, owner):
    resp = await client.get("/disputes", headers=auth_header(owner))
    assert resp.status_code == 200
    items = resp.json()["disputes"]
    assert len(items) == 1
    assert items[0]["user_role"] == "counterparty"
    assert items[0]["other_party_id"] == str(renter.id)

    resp = await client.get("/disputes?role=filed", headers=auth_header(owner))
    assert resp.json()["disputes"] == []

    resp = await client.get("/disputes?role=sideways", headers=auth_header(owner))
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_content"


# ============ messages ============


@pytest.mark.asyncio
async def test_post_and_list_messages(client: AsyncClient, dispute, renter, owner, staff):
    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "Any update on the gate?"},
        headers=auth_header(renter),
    )
    assert resp.status_code == 201
    assert resp.json()["sender_name"] == "Rita R."

    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "Checking with the owner.", "is_internal": False},
        headers=auth_header(staff),
    )
    assert resp.status_code == 201
    assert resp.json()["sender_name"] == "PlotShare Support"

    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "Owner history looks clean.", "is_internal": True},
        headers=auth_header(staff),
    )
    assert resp.status_code == 201

    party_view = await client.get(f"/disputes/{dispute.id}/messages", headers=auth_header(owner))
    assert [m["content"] for m in party_view.json()] == [
        "Any update on the gate?",
        "Checking with the owner.",
    ]
    staff_view = await client.get(f"/disputes/{dispute.id}/messages", headers=auth_header(staff))
    assert len(staff_view.json()) == 3


@pytest.mark.asyncio
async def test_party_internal_message_is_forbidden(client: AsyncClient, dispute, renter):
    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "psst", "is_internal": True},
        headers=auth_header(renter),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "not_authorized"


# ============ staff ============


@pytest.mark.asyncio
async def test_staff_endpoints_reject_members(client: AsyncClient, dispute, renter, stranger):
    resp = await client.get("/admin/disputes", headers=auth_header(renter))
    assert resp.status_code == 403

    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "no_refund", "resolved_amount": "0"},
        headers=auth_header(renter),
    )
    assert resp.status_code == 403

    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "no_refund", "resolved_amount": "0"},
        headers=auth_header(stranger),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_staff_queue_and_stats(client: AsyncClient, dispute, staff):
    resp = await client.get("/admin/disputes", headers=auth_header(staff))
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["total_pages"] == 1
    assert body["disputes"][0]["message_count"] == 0

    resp = await client.get("/admin/disputes?status=bogus", headers=auth_header(staff))
    assert resp.status_code == 422

    resp = await client.get("/admin/disputes/stats", headers=auth_header(staff))
    assert resp.json() == {"open": 1, "under_review": 0, "resolved": 0, "closed": 0, "total": 1}


@pytest.mark.asyncio
async def test_review_resolve_and_audit(client: AsyncClient, dispute, booking, staff, reconciliation):
    resp = await client.post(f"/admin/disputes/{dispute.id}/review", headers=auth_header(staff))
    assert resp.status_code == 200
    assert resp.json()["status"] == "under_review"

    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "partial_refund", "resolved_amount": "200.00", "notes": "Split the week."},
        headers=auth_header(staff),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "resolved"
    assert body["resolution"] == "partial_refund"
    assert Decimal(body["resolved_amount"]) == Decimal("200.00")
    reconciliation.apply_resolution.assert_awaited_once()

    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "partial_refund", "resolved_amount": "200.00"},
        headers=auth_header(staff),
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "illegal_transition"

    resp = await client.get(f"/admin/disputes/{dispute.id}/audit", headers=auth_header(staff))
    assert [e["action"] for e in resp.json()] == ["dispute_review_started", "dispute_resolved"]


@pytest.mark.asyncio
async def test_invalid_resolution_payload(client: AsyncClient, dispute, staff):
    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "full_refund", "resolved_amount": "300.00"},
        headers=auth_header(staff),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_resolution_payload"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"resolution": "store_credit", "resolved_amount": "0"},
        {"resolution": "partial_refund", "resolved_amount": "two hundred"},
        {"resolution": "partial_refund"},
    ],
)
async def test_malformed_resolution_body(client: AsyncClient, dispute, staff, reconciliation, payload):
    """Schema-level rejections carry the same error kind as engine-level ones."""
    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve", json=payload, headers=auth_header(staff)
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "invalid_resolution_payload"
    assert body["retriable"] is False
    assert "resol" in body["detail"]
    reconciliation.apply_resolution.assert_not_called()


@pytest.mark.asyncio
async def test_oversized_message_body_is_invalid_content(client: AsyncClient, dispute, renter):
    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "x" * 20001},
        headers=auth_header(renter),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_content"
    assert "content" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_reconciliation_failure_is_retriable(client: AsyncClient, dispute, staff, reconciliation):
    reconciliation.apply_resolution.return_value = ReconciliationResult(ok=False, reason="declined")
    resp = await client.post(
        f"/admin/disputes/{dispute.id}/resolve",
        json={"resolution": "partial_refund", "resolved_amount": "50"},
        headers=auth_header(staff),
    )
    assert resp.status_code == 502
    assert resp.json()["error"] == "reconciliation_failed"
    assert resp.json()["retriable"] is True


@pytest.mark.asyncio
async def test_close_dispute(client: AsyncClient, dispute, staff, renter):
    resp = await client.post(
        f"/admin/disputes/{dispute.id}/close",
        json={"notes": "Renter withdrew the complaint."},
        headers=auth_header(staff),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "closed"

    resp = await client.post(
        f"/disputes/{dispute.id}/messages",
        json={"content": "Actually, one more thing."},
        headers=auth_header(renter),
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "dispute_closed"


# ============ health ============


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["database"] == "connected"
