"""Tests for the dispute state machine and resolution payload checks."""

from decimal import Decimal

import pytest

from plotshare.exceptions import IllegalTransition, InvalidContent, InvalidResolutionPayload
from plotshare.models.enums import DisputeResolution, DisputeStatus
from plotshare.utils.dispute_state import (
    ALLOWED_TRANSITIONS,
    is_terminal,
    parse_amount,
    validate_resolution_payload,
    validate_transition,
)

TOTAL = Decimal("500.00")


# ============ transitions ============


@pytest.mark.parametrize(
    "current,new",
    [
        (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW),
        (DisputeStatus.OPEN, DisputeStatus.RESOLVED),
        (DisputeStatus.OPEN, DisputeStatus.CLOSED),
        (DisputeStatus.UNDER_REVIEW, DisputeStatus.RESOLVED),
        (DisputeStatus.UNDER_REVIEW, DisputeStatus.CLOSED),
    ],
)
def test_allowed_transitions(current, new):
    validate_transition(current, new)


@pytest.mark.parametrize("terminal", [DisputeStatus.RESOLVED, DisputeStatus.CLOSED])
@pytest.mark.parametrize("target", list(DisputeStatus))
def test_terminal_states_never_transition(terminal, target):
    """Nothing leaves RESOLVED or CLOSED, including re-requesting the same state."""
    with pytest.raises(IllegalTransition) as exc_info:
        validate_transition(terminal, target)
    assert exc_info.value.current == terminal.value
    assert exc_info.value.requested == target.value


def test_under_review_cannot_go_back_to_open():
    with pytest.raises(IllegalTransition):
        validate_transition(DisputeStatus.UNDER_REVIEW, DisputeStatus.OPEN)


def test_open_to_open_is_illegal():
    with pytest.raises(IllegalTransition):
        validate_transition(DisputeStatus.OPEN, DisputeStatus.OPEN)


def test_illegal_transition_message_names_both_states():
    with pytest.raises(IllegalTransition) as exc_info:
        validate_transition(DisputeStatus.RESOLVED, DisputeStatus.RESOLVED)
    assert "resolved" in exc_info.value.detail


def test_is_terminal():
    assert is_terminal(DisputeStatus.RESOLVED)
    assert is_terminal(DisputeStatus.CLOSED)
    assert not is_terminal(DisputeStatus.OPEN)
    assert not is_terminal(DisputeStatus.UNDER_REVIEW)
    # String values are accepted too (rows loaded by Core queries)
    assert is_terminal("closed")


def test_every_status_has_a_transition_entry():
    assert set(ALLOWED_TRANSITIONS) == set(DisputeStatus)


# ============ amounts ============


def test_parse_amount_accepts_strings_ints_and_decimals():
    assert parse_amount("200") == Decimal("200.00")
    assert parse_amount(150) == Decimal("150.00")
    assert parse_amount(Decimal("99.9")) == Decimal("99.90")
    assert parse_amount(12.5) == Decimal("12.50")


@pytest.mark.parametrize("value", ["-1", "abc", "NaN", "Infinity", "1.005", True])
def test_parse_amount_rejects(value):
    with pytest.raises(InvalidResolutionPayload):
        parse_amount(value)


def test_parse_amount_uses_the_given_error_kind():
    with pytest.raises(InvalidContent):
        parse_amount("-5", error_cls=InvalidContent, field="requested_amount")


# ============ resolution payload ============


def test_partial_refund_within_bounds():
    kind, amount = validate_resolution_payload("partial_refund", "200.00", TOTAL)
    assert kind == DisputeResolution.PARTIAL_REFUND
    assert amount == Decimal("200.00")


def test_full_refund_must_equal_total():
    """A 300.00 full refund on a 500.00 booking is rejected."""
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload(DisputeResolution.FULL_REFUND, Decimal("300.00"), TOTAL)
    kind, amount = validate_resolution_payload(DisputeResolution.FULL_REFUND, Decimal("500"), TOTAL)
    assert amount == TOTAL


@pytest.mark.parametrize(
    "kind",
    [DisputeResolution.NO_REFUND, DisputeResolution.DISMISSED, DisputeResolution.DEPOSIT_FORFEITED],
)
def test_zero_amount_resolutions(kind):
    _, amount = validate_resolution_payload(kind, 0, TOTAL)
    assert amount == Decimal("0.00")
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload(kind, "0.01", TOTAL)


@pytest.mark.parametrize("amount", ["0", "500.00"])
def test_partial_refund_must_be_strictly_inside(amount):
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload(DisputeResolution.PARTIAL_REFUND, amount, TOTAL)


def test_deposit_returned_needs_positive_amount():
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload(DisputeResolution.DEPOSIT_RETURNED, "0", TOTAL)
    _, amount = validate_resolution_payload(DisputeResolution.DEPOSIT_RETURNED, "100", TOTAL)
    assert amount == Decimal("100.00")


@pytest.mark.parametrize("amount", ["0", "123.45", "500"])
def test_mutual_agreement_accepts_full_range(amount):
    _, parsed = validate_resolution_payload(DisputeResolution.MUTUAL_AGREEMENT, amount, TOTAL)
    assert Decimal("0") <= parsed <= TOTAL


def test_amount_above_total_is_rejected_for_every_kind():
    for kind in DisputeResolution:
        with pytest.raises(InvalidResolutionPayload):
            validate_resolution_payload(kind, "500.01", TOTAL)


def test_unknown_kind_and_missing_amount():
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload("store_credit", "10", TOTAL)
    with pytest.raises(InvalidResolutionPayload):
        validate_resolution_payload(DisputeResolution.NO_REFUND, None, TOTAL)
