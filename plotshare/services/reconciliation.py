"""Financial reconciliation of dispute resolutions against Stripe payments."""

import asyncio
import time as _time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import stripe
import structlog

from plotshare.config import settings
from plotshare.metrics import STRIPE_CALL_DURATION
from plotshare.models.enums import DisputeResolution
from plotshare.services.bookings import BookingProvider

logger = structlog.get_logger()

# Resolutions that send money back to the renter when the amount is positive
REFUND_RESOLUTIONS = frozenset({
    DisputeResolution.FULL_REFUND,
    DisputeResolution.PARTIAL_REFUND,
    DisputeResolution.DEPOSIT_RETURNED,
    DisputeResolution.MUTUAL_AGREEMENT,
})


@dataclass(frozen=True)
class ReconciliationResult:
    ok: bool
    reason: str | None = None
    reference: str | None = None


class ReconciliationService(Protocol):
    async def apply_resolution(
        self,
        booking_id: uuid.UUID,
        resolved_amount: Decimal,
        resolution_kind: DisputeResolution,
        idempotency_key: str,
    ) -> ReconciliationResult: ...


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripeReconciliationService:
    """Applies a resolution by refunding the booking's PaymentIntent.

    Zero-amount and non-refund resolutions need no money movement and succeed
    without calling Stripe. Without a Stripe key, or for ``pi_mock_`` intents,
    refunds are mocked.
    """

    def __init__(self, bookings: BookingProvider) -> None:
        self.bookings = bookings

    async def apply_resolution(
        self,
        booking_id: uuid.UUID,
        resolved_amount: Decimal,
        resolution_kind: DisputeResolution,
        idempotency_key: str,
    ) -> ReconciliationResult:
        if resolution_kind not in REFUND_RESOLUTIONS or resolved_amount <= 0:
            logger.info(
                "reconciliation_no_money_movement",
                booking_id=str(booking_id),
                resolution=resolution_kind.value,
            )
            return ReconciliationResult(ok=True)

        booking = await self.bookings.get_booking(booking_id)
        if booking is None:
            return ReconciliationResult(ok=False, reason="booking not found")
        if not booking.stripe_payment_intent_id:
            return ReconciliationResult(ok=False, reason="booking has no payment to refund")

        try:
            refund = await self._refund(
                booking.stripe_payment_intent_id,
                to_cents(resolved_amount),
                idempotency_key,
            )
        except stripe.StripeError as e:
            logger.exception("stripe_dispute_refund_failed", booking_id=str(booking_id))
            return ReconciliationResult(ok=False, reason=f"Stripe refund failed: {e.user_message or e}")
        except ValueError as e:
            return ReconciliationResult(ok=False, reason=str(e))

        return ReconciliationResult(ok=True, reference=refund["id"])

    async def _refund(self, payment_intent_id: str, amount_cents: int, idempotency_key: str) -> dict:
        if not settings.STRIPE_SECRET_KEY or payment_intent_id.startswith("pi_mock_"):
            logger.info("stripe_mock_refund", intent_id=payment_intent_id, amount=amount_cents)
            return {"id": f"re_mock_{payment_intent_id}", "status": "succeeded"}

        start = _time.monotonic()
        intent = await asyncio.to_thread(
            stripe.PaymentIntent.retrieve, payment_intent_id, api_key=settings.STRIPE_SECRET_KEY
        )
        if intent.status != "succeeded":
            raise ValueError(f"payment is not captured (status '{intent.status}')")

        max_refundable = intent.amount - (intent.amount_refunded or 0)
        if amount_cents > max_refundable:
            raise ValueError(f"refund of {amount_cents} exceeds max refundable {max_refundable}")

        refund = await asyncio.to_thread(
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount_cents,
            idempotency_key=idempotency_key,
            api_key=settings.STRIPE_SECRET_KEY,
        )
        STRIPE_CALL_DURATION.labels(operation="dispute_refund").observe(_time.monotonic() - start)
        logger.info("stripe_dispute_refund_created", refund_id=refund.id, intent_id=payment_intent_id)
        return {"id": refund.id, "status": refund.status}
