"""Transition table for the transaction lifecycle.

Maps every TransactionAction to the parties allowed to request it and the
preconditions that must hold against freshly loaded state. The state machine
(domain/state_machine.py) decides whether the move is legal from the current
status; this module decides whether *this caller* may make it *now*.

Guards are plain functions over a TransitionContext snapshot. They raise
ForbiddenError or PreconditionFailedError and never touch the database, so
the whole table can be tested without infrastructure.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal

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


@dataclass(frozen=True)
class AgreementFlags:
    """Sub-stage flags recorded while a transaction sits in AGREEMENT."""

    buyer_signed: bool = False
    seller_signed: bool = False
    has_representation_doc: bool = False
    buyer_mediation_signed: bool = False
    seller_mediation_signed: bool = False
    buyer_confirmed: bool = False
    seller_confirmed: bool = False

    @property
    def promissory_complete(self) -> bool:
        return self.buyer_signed and self.seller_signed

    @property
    def mediation_complete(self) -> bool:
        return self.buyer_mediation_signed and self.seller_mediation_signed

    @property
    def documentation_complete(self) -> bool:
        return (
            self.promissory_complete
            and self.has_representation_doc
            and self.mediation_complete
        )


@dataclass(frozen=True)
class TransitionContext:
    """Everything a guard may look at, loaded fresh at transition time.

    Attributes:
        status: The persisted status.
        party: The caller's role on this transaction.
        latest_offer_by: Who made the offer currently on the table.
        flags: AGREEMENT sub-stage flags.
        buyer_kyc2 / seller_kyc2: Tier-2 status read from the KYC store.
        step_statuses: Fund-protection step statuses ordered by step number.
        price: Price carried by the request (counter-offers only).
    """

    status: TransactionStatus
    party: PartyRole
    latest_offer_by: PartyRole = PartyRole.BUYER
    flags: AgreementFlags = field(default_factory=AgreementFlags)
    buyer_kyc2: KycStatus | None = None
    seller_kyc2: KycStatus | None = None
    step_statuses: tuple[StepStatus, ...] = ()
    price: Decimal | None = None


Guard = Callable[[TransitionContext], None]


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _responder_only(ctx: TransitionContext) -> None:
    """Only the party who did not make the latest offer may answer it."""
    if ctx.party == PartyRole.ADMIN:
        raise ForbiddenError("Only the buyer or seller can respond to an offer")
    if ctx.party == ctx.latest_offer_by:
        raise ForbiddenError("You cannot respond to your own offer")


def _positive_price(ctx: TransitionContext) -> None:
    if ctx.price is None or ctx.price <= 0:
        raise ValidationFailedError(
            "Counter price is required and must be greater than zero",
            field="price",
        )


def _documentation_complete(ctx: TransitionContext) -> None:
    flags = ctx.flags
    if not flags.buyer_signed:
        raise PreconditionFailedError(
            "buyer_signed", "Buyer has not signed the promissory agreement"
        )
    if not flags.seller_signed:
        raise PreconditionFailedError(
            "seller_signed", "Seller has not signed the promissory agreement"
        )
    if not flags.has_representation_doc:
        raise PreconditionFailedError(
            "has_representation_doc", "A representation document must be uploaded"
        )
    if not flags.buyer_mediation_signed:
        raise PreconditionFailedError(
            "buyer_mediation_signed", "Buyer has not signed the mediation agreement"
        )
    if not flags.seller_mediation_signed:
        raise PreconditionFailedError(
            "seller_mediation_signed", "Seller has not signed the mediation agreement"
        )


def _both_kyc2_passed(ctx: TransitionContext) -> None:
    if ctx.buyer_kyc2 != KycStatus.PASSED:
        raise PreconditionFailedError(
            "buyer_kyc2_passed",
            f"Buyer KYC tier-2 status is {ctx.buyer_kyc2 or 'unknown'}, PASSED required",
        )
    if ctx.seller_kyc2 != KycStatus.PASSED:
        raise PreconditionFailedError(
            "seller_kyc2_passed",
            f"Seller KYC tier-2 status is {ctx.seller_kyc2 or 'unknown'}, PASSED required",
        )


def _all_steps_completed(ctx: TransitionContext) -> None:
    if not ctx.step_statuses:
        raise PreconditionFailedError(
            "fund_protection_initialized", "Fund protection steps have not been generated"
        )
    pending = sum(1 for s in ctx.step_statuses if s != StepStatus.COMPLETED)
    if pending:
        raise PreconditionFailedError(
            "fund_protection_completed",
            f"{pending} fund protection step(s) are not completed",
        )


def _parties_cancel_before_agreement(ctx: TransitionContext) -> None:
    if ctx.party != PartyRole.ADMIN and not ctx.status.is_pre_agreement:
        raise ForbiddenError(
            "Only an administrator can cancel a transaction once an agreement is reached"
        )


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

_PARTIES = frozenset({PartyRole.BUYER, PartyRole.SELLER})
_PARTIES_AND_ADMIN = frozenset({PartyRole.BUYER, PartyRole.SELLER, PartyRole.ADMIN})
_ADMIN = frozenset({PartyRole.ADMIN})


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table."""

    action: TransactionAction
    allowed: frozenset[PartyRole]
    guards: tuple[Guard, ...] = ()

    @property
    def event_name(self) -> str:
        return self.action.event_name

    def check(self, ctx: TransitionContext) -> None:
        """Run role and precondition checks in table order."""
        if ctx.party not in self.allowed:
            raise ForbiddenError(
                f"{ctx.party.value.lower()} may not perform {self.action.value}"
            )
        for guard in self.guards:
            guard(ctx)


TRANSITION_RULES: dict[TransactionAction, TransitionRule] = {
    rule.action: rule
    for rule in (
        TransitionRule(
            TransactionAction.COUNTER_OFFER,
            _PARTIES,
            (_responder_only, _positive_price),
        ),
        TransitionRule(TransactionAction.ACCEPT_OFFER, _PARTIES, (_responder_only,)),
        TransitionRule(TransactionAction.REJECT_OFFER, _PARTIES, (_responder_only,)),
        TransitionRule(
            TransactionAction.COMPLETE_AGREEMENT,
            _PARTIES_AND_ADMIN,
            (_documentation_complete,),
        ),
        TransitionRule(
            TransactionAction.ENTER_FUND_PROTECTION,
            _PARTIES_AND_ADMIN,
            (_both_kyc2_passed,),
        ),
        TransitionRule(
            TransactionAction.RELEASE_TO_ESCROW,
            _PARTIES_AND_ADMIN,
            (_all_steps_completed,),
        ),
        TransitionRule(TransactionAction.BEGIN_CLOSING, _ADMIN),
        TransitionRule(TransactionAction.COMPLETE_CLOSING, _ADMIN),
        TransitionRule(
            TransactionAction.CANCEL,
            _PARTIES_AND_ADMIN,
            (_parties_cancel_before_agreement,),
        ),
    )
}


def get_rule(action: TransactionAction) -> TransitionRule:
    return TRANSITION_RULES[action]


def resolve_party(
    actor_id: str,
    is_admin: bool,
    buyer_id: str,
    seller_id: str,
) -> PartyRole:
    """Work out the caller's role on a transaction.

    The auth provider's identity is trusted, but party membership is always
    re-derived from the transaction's own buyer/seller ids.

    Raises:
        ForbiddenError: If the caller is neither a party nor an admin.
    """
    if actor_id == buyer_id:
        return PartyRole.BUYER
    if actor_id == seller_id:
        return PartyRole.SELLER
    if is_admin:
        return PartyRole.ADMIN
    raise ForbiddenError("You are not a party to this transaction")


def counterparty(party: PartyRole) -> PartyRole:
    """Return the other side of the deal (admins have no counterparty)."""
    if party == PartyRole.BUYER:
        return PartyRole.SELLER
    if party == PartyRole.SELLER:
        return PartyRole.BUYER
    raise ValueError("Admin has no counterparty")
