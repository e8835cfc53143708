"""Tests for the transition table guards (no database involved)."""

from __future__ import annotations

from decimal import Decimal

import pytest

from property_clearinghouse.domain.enums import (
    KycStatus,
    PartyRole,
    StepStatus,
    TransactionAction,
    TransactionStatus,
)
from property_clearinghouse.domain.exceptions import (
    ForbiddenError,
    PreconditionFailedError,
    ValidationFailedError,
)
from property_clearinghouse.domain.transitions import (
    TRANSITION_RULES,
    AgreementFlags,
    TransitionContext,
    counterparty,
    get_rule,
    resolve_party,
)

ALL_SIGNED = AgreementFlags(
    buyer_signed=True,
    seller_signed=True,
    has_representation_doc=True,
    buyer_mediation_signed=True,
    seller_mediation_signed=True,
)


def _ctx(status: TransactionStatus, party: PartyRole, **kwargs) -> TransitionContext:
    return TransitionContext(status=status, party=party, **kwargs)


class TestTable:
    def test_every_action_has_a_rule(self) -> None:
        assert set(TRANSITION_RULES) == set(TransactionAction)

    def test_closing_is_admin_only(self) -> None:
        for action in (TransactionAction.BEGIN_CLOSING, TransactionAction.COMPLETE_CLOSING):
            with pytest.raises(ForbiddenError):
                get_rule(action).check(_ctx(TransactionStatus.ESCROW, PartyRole.BUYER))
            get_rule(action).check(_ctx(TransactionStatus.ESCROW, PartyRole.ADMIN))


class TestNegotiationGuards:
    def test_seller_answers_buyer_offer(self) -> None:
        ctx = _ctx(TransactionStatus.OFFER, PartyRole.SELLER, latest_offer_by=PartyRole.BUYER)
        get_rule(TransactionAction.ACCEPT_OFFER).check(ctx)

    def test_cannot_answer_own_offer(self) -> None:
        ctx = _ctx(TransactionStatus.OFFER, PartyRole.BUYER, latest_offer_by=PartyRole.BUYER)
        with pytest.raises(ForbiddenError, match="your own offer"):
            get_rule(TransactionAction.ACCEPT_OFFER).check(ctx)

    def test_buyer_answers_seller_counter(self) -> None:
        ctx = _ctx(
            TransactionStatus.NEGOTIATION,
            PartyRole.BUYER,
            latest_offer_by=PartyRole.SELLER,
            price=Decimal("305000"),
        )
        get_rule(TransactionAction.COUNTER_OFFER).check(ctx)

    def test_admin_cannot_negotiate(self) -> None:
        ctx = _ctx(TransactionStatus.OFFER, PartyRole.ADMIN)
        with pytest.raises(ForbiddenError):
            get_rule(TransactionAction.REJECT_OFFER).check(ctx)

    @pytest.mark.parametrize("price", [None, Decimal(0), Decimal("-1")])
    def test_counter_needs_positive_price(self, price: Decimal | None) -> None:
        ctx = _ctx(TransactionStatus.OFFER, PartyRole.SELLER, price=price)
        with pytest.raises(ValidationFailedError):
            get_rule(TransactionAction.COUNTER_OFFER).check(ctx)


class TestAgreementGuards:
    def test_documentation_complete(self) -> None:
        ctx = _ctx(TransactionStatus.AGREEMENT, PartyRole.BUYER, flags=ALL_SIGNED)
        get_rule(TransactionAction.COMPLETE_AGREEMENT).check(ctx)

    @pytest.mark.parametrize(
        "missing",
        [
            "buyer_signed",
            "seller_signed",
            "has_representation_doc",
            "buyer_mediation_signed",
            "seller_mediation_signed",
        ],
    )
    def test_names_the_missing_flag(self, missing: str) -> None:
        values = {
            "buyer_signed": True,
            "seller_signed": True,
            "has_representation_doc": True,
            "buyer_mediation_signed": True,
            "seller_mediation_signed": True,
        }
        values[missing] = False
        ctx = _ctx(TransactionStatus.AGREEMENT, PartyRole.SELLER, flags=AgreementFlags(**values))
        with pytest.raises(PreconditionFailedError) as exc_info:
            get_rule(TransactionAction.COMPLETE_AGREEMENT).check(ctx)
        assert exc_info.value.precondition == missing

    def test_confirmations_are_not_required(self) -> None:
        assert not ALL_SIGNED.buyer_confirmed
        assert ALL_SIGNED.documentation_complete


class TestKyc2Guard:
    def test_both_passed(self) -> None:
        ctx = _ctx(
            TransactionStatus.KYC2_VERIFICATION,
            PartyRole.BUYER,
            buyer_kyc2=KycStatus.PASSED,
            seller_kyc2=KycStatus.PASSED,
        )
        get_rule(TransactionAction.ENTER_FUND_PROTECTION).check(ctx)

    def test_seller_pending(self) -> None:
        ctx = _ctx(
            TransactionStatus.KYC2_VERIFICATION,
            PartyRole.BUYER,
            buyer_kyc2=KycStatus.PASSED,
            seller_kyc2=KycStatus.PENDING,
        )
        with pytest.raises(PreconditionFailedError) as exc_info:
            get_rule(TransactionAction.ENTER_FUND_PROTECTION).check(ctx)
        assert exc_info.value.precondition == "seller_kyc2_passed"


class TestReleaseGuard:
    def test_no_steps(self) -> None:
        ctx = _ctx(TransactionStatus.FUND_PROTECTION, PartyRole.ADMIN)
        with pytest.raises(PreconditionFailedError) as exc_info:
            get_rule(TransactionAction.RELEASE_TO_ESCROW).check(ctx)
        assert exc_info.value.precondition == "fund_protection_initialized"

    def test_pending_step_blocks(self) -> None:
        ctx = _ctx(
            TransactionStatus.FUND_PROTECTION,
            PartyRole.ADMIN,
            step_statuses=(StepStatus.COMPLETED, StepStatus.PENDING),
        )
        with pytest.raises(PreconditionFailedError) as exc_info:
            get_rule(TransactionAction.RELEASE_TO_ESCROW).check(ctx)
        assert exc_info.value.precondition == "fund_protection_completed"

    def test_all_completed(self) -> None:
        ctx = _ctx(
            TransactionStatus.FUND_PROTECTION,
            PartyRole.ADMIN,
            step_statuses=(StepStatus.COMPLETED, StepStatus.COMPLETED),
        )
        get_rule(TransactionAction.RELEASE_TO_ESCROW).check(ctx)


class TestCancelGuard:
    def test_party_cancels_during_negotiation(self) -> None:
        ctx = _ctx(TransactionStatus.NEGOTIATION, PartyRole.BUYER)
        get_rule(TransactionAction.CANCEL).check(ctx)

    def test_party_cannot_cancel_after_agreement(self) -> None:
        ctx = _ctx(TransactionStatus.FUND_PROTECTION, PartyRole.SELLER)
        with pytest.raises(ForbiddenError):
            get_rule(TransactionAction.CANCEL).check(ctx)

    def test_admin_cancels_any_time(self) -> None:
        get_rule(TransactionAction.CANCEL).check(_ctx(TransactionStatus.CLOSING, PartyRole.ADMIN))


class TestParties:
    def test_resolve_party(self) -> None:
        assert resolve_party("b", False, "b", "s") == PartyRole.BUYER
        assert resolve_party("s", False, "b", "s") == PartyRole.SELLER
        assert resolve_party("x", True, "b", "s") == PartyRole.ADMIN

    def test_admin_who_is_buyer_acts_as_buyer(self) -> None:
        assert resolve_party("b", True, "b", "s") == PartyRole.BUYER

    def test_outsider_forbidden(self) -> None:
        with pytest.raises(ForbiddenError):
            resolve_party("x", False, "b", "s")

    def test_counterparty(self) -> None:
        assert counterparty(PartyRole.BUYER) == PartyRole.SELLER
        assert counterparty(PartyRole.SELLER) == PartyRole.BUYER
        with pytest.raises(ValueError):
            counterparty(PartyRole.ADMIN)
