"""Dispute state machine and resolution payload validation.

States: open -> under_review -> resolved | closed (closed also from open).
Resolved and closed are terminal, and re-requesting a terminal state is an
illegal transition: resolutions are one-shot.
"""

from decimal import Decimal, InvalidOperation

from plotshare.exceptions import IllegalTransition, InvalidResolutionPayload
from plotshare.models.enums import DisputeResolution, DisputeStatus

# Defines all valid status transitions for a dispute
ALLOWED_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.OPEN: {
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    },
    DisputeStatus.UNDER_REVIEW: {
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    },
    DisputeStatus.RESOLVED: set(),  # Terminal state
    DisputeStatus.CLOSED: set(),  # Terminal state
}

CENT = Decimal("0.01")

# Resolutions whose resolved amount is pinned to zero (nothing goes back to the renter)
ZERO_AMOUNT_RESOLUTIONS = frozenset({
    DisputeResolution.NO_REFUND,
    DisputeResolution.DISMISSED,
    DisputeResolution.DEPOSIT_FORFEITED,
})


def is_terminal(status: DisputeStatus) -> bool:
    return not ALLOWED_TRANSITIONS[DisputeStatus(status)]


def validate_transition(current: DisputeStatus, new: DisputeStatus) -> None:
    """Validate a dispute status transition. Raises IllegalTransition if invalid."""
    current = DisputeStatus(current)
    new = DisputeStatus(new)
    if new not in ALLOWED_TRANSITIONS[current]:
        raise IllegalTransition(current.value, new.value)


def parse_amount(value, error_cls=InvalidResolutionPayload, field: str = "amount") -> Decimal:
    """Coerce a currency value to a non-negative Decimal with at most two decimals."""
    if isinstance(value, bool):
        raise error_cls(f"{field} must be a number")
    try:
        # str() first so floats keep their short repr instead of binary noise
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise error_cls(f"{field} must be a number") from None
    if not amount.is_finite():
        raise error_cls(f"{field} must be a finite number")
    if amount < 0:
        raise error_cls(f"{field} must not be negative")
    if amount != amount.quantize(CENT):
        raise error_cls(f"{field} must have at most two decimal places")
    return amount.quantize(CENT)


def validate_resolution_payload(
    resolution: DisputeResolution | str,
    resolved_amount,
    booking_total: Decimal,
) -> tuple[DisputeResolution, Decimal]:
    """Check a resolution kind and amount against the booking's current total.

    ``resolved_amount`` is always the amount returned to the renter.
    Returns the normalised ``(resolution, amount)`` pair.
    """
    try:
        kind = DisputeResolution(resolution)
    except ValueError:
        raise InvalidResolutionPayload(f"Unknown resolution kind: {resolution}") from None

    if resolved_amount is None:
        raise InvalidResolutionPayload("resolved_amount is required to resolve a dispute")
    amount = parse_amount(resolved_amount, field="resolved_amount")
    total = Decimal(booking_total).quantize(CENT)

    if amount > total:
        raise InvalidResolutionPayload(
            f"resolved_amount {amount} exceeds the booking total {total}"
        )

    if kind == DisputeResolution.FULL_REFUND and amount != total:
        raise InvalidResolutionPayload(
            f"A full refund must equal the booking total {total}, got {amount}"
        )
    if kind in ZERO_AMOUNT_RESOLUTIONS and amount != 0:
        raise InvalidResolutionPayload(
            f"Resolution '{kind.value}' requires a resolved_amount of 0, got {amount}"
        )
    if kind == DisputeResolution.PARTIAL_REFUND and not (0 < amount < total):
        raise InvalidResolutionPayload(
            f"A partial refund must be strictly between 0 and {total}, got {amount}"
        )
    if kind == DisputeResolution.DEPOSIT_RETURNED and amount == 0:
        raise InvalidResolutionPayload("A returned deposit must have a positive resolved_amount")

    return kind, amount
