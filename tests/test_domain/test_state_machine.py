"""Tests for the TransactionStateMachine domain guard.

These tests verify that:
    1. The full lifecycle OFFER -> COMPLETED is allowed.
    2. Negotiation loops and cancellation paths behave correctly.
    3. Illegal jumps are blocked and terminal states allow nothing.
    4. The convenience function validate_transition works.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from property_clearinghouse.domain.state_machine import (
    TransactionStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: OFFER -> COMPLETED."""

    def test_full_lifecycle(self) -> None:
        sm = TransactionStateMachine("OFFER")
        assert sm.status == "OFFER"

        sm.counter_offer()
        assert sm.status == "NEGOTIATION"

        sm.accept_offer()
        assert sm.status == "AGREEMENT"

        sm.complete_agreement()
        assert sm.status == "KYC2_VERIFICATION"

        sm.enter_fund_protection()
        assert sm.status == "FUND_PROTECTION"

        sm.release_to_escrow()
        assert sm.status == "ESCROW"

        sm.begin_closing()
        assert sm.status == "CLOSING"

        sm.complete_closing()
        assert sm.status == "COMPLETED"

    def test_accept_straight_from_offer(self) -> None:
        assert validate_transition("OFFER", "accept_offer") == "AGREEMENT"


class TestNegotiation:
    def test_counter_offer_loops_in_negotiation(self) -> None:
        sm = TransactionStateMachine("NEGOTIATION")
        sm.counter_offer()
        sm.counter_offer()
        assert sm.status == "NEGOTIATION"

    @pytest.mark.parametrize("status", ["OFFER", "NEGOTIATION"])
    def test_reject_cancels(self, status: str) -> None:
        assert validate_transition(status, "reject_offer") == "CANCELLED"


class TestCancellation:
    @pytest.mark.parametrize(
        "status",
        [
            "OFFER",
            "NEGOTIATION",
            "AGREEMENT",
            "KYC2_VERIFICATION",
            "FUND_PROTECTION",
            "ESCROW",
            "CLOSING",
        ],
    )
    def test_cancel_from_any_active_status(self, status: str) -> None:
        assert validate_transition(status, "cancel") == "CANCELLED"


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_offer_to_escrow(self) -> None:
        sm = TransactionStateMachine("OFFER")
        with pytest.raises(TransitionNotAllowed):
            sm.release_to_escrow()

    def test_agreement_cannot_skip_kyc2(self) -> None:
        sm = TransactionStateMachine("AGREEMENT")
        with pytest.raises(TransitionNotAllowed):
            sm.enter_fund_protection()

    def test_no_counter_offer_after_agreement(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("AGREEMENT", "counter_offer")

    def test_completed_is_final(self) -> None:
        assert TransactionStateMachine("COMPLETED").get_allowed_events() == []

    def test_cancelled_is_final(self) -> None:
        assert TransactionStateMachine("CANCELLED").get_allowed_events() == []


class TestAllowedEvents:
    """Test the get_allowed_events helper."""

    def test_offer_allowed(self) -> None:
        allowed = TransactionStateMachine("OFFER").get_allowed_events()
        assert set(allowed) == {"counter_offer", "accept_offer", "reject_offer", "cancel"}

    def test_fund_protection_allowed(self) -> None:
        allowed = TransactionStateMachine("FUND_PROTECTION").get_allowed_events()
        assert set(allowed) == {"release_to_escrow", "cancel"}


class TestValidateTransitionFunction:
    """Test the convenience function."""

    def test_valid_transition(self) -> None:
        assert validate_transition("KYC2_VERIFICATION", "enter_fund_protection") == (
            "FUND_PROTECTION"
        )

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("OFFER", "nonexistent_event")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TransactionStateMachine("INVALID_STATUS")
