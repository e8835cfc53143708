"""Transaction State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain
level. Role checks and business preconditions live in domain/transitions.py;
this layer only answers "is this move legal from here?", so an OFFER can
never jump straight to ESCROW no matter which route or service asks.

Transition table:
    OFFER              -> NEGOTIATION        (counter_offer)
    NEGOTIATION        -> NEGOTIATION        (counter_offer)
    OFFER              -> AGREEMENT          (accept_offer)
    NEGOTIATION        -> AGREEMENT          (accept_offer)
    OFFER              -> CANCELLED          (reject_offer)
    NEGOTIATION        -> CANCELLED          (reject_offer)
    AGREEMENT          -> KYC2_VERIFICATION  (complete_agreement)
    KYC2_VERIFICATION  -> FUND_PROTECTION    (enter_fund_protection)
    FUND_PROTECTION    -> ESCROW             (release_to_escrow)
    ESCROW             -> CLOSING            (begin_closing)
    CLOSING            -> COMPLETED          (complete_closing)
    any non-terminal   -> CANCELLED          (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class TransactionStateMachine(StateMachine):
    """State machine that guards property transaction lifecycle transitions.

    Usage:
        sm = TransactionStateMachine(current_status="NEGOTIATION")
        sm.accept_offer()    # transitions to AGREEMENT
        sm.status            # "AGREEMENT"
    """

    # --- States ---
    OFFER = State("OFFER", initial=True)
    NEGOTIATION = State("NEGOTIATION")
    AGREEMENT = State("AGREEMENT")
    KYC2_VERIFICATION = State("KYC2_VERIFICATION")
    FUND_PROTECTION = State("FUND_PROTECTION")
    ESCROW = State("ESCROW")
    CLOSING = State("CLOSING")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    # --- Events / Transitions ---

    # Negotiation
    counter_offer = OFFER.to(NEGOTIATION) | NEGOTIATION.to.itself()
    accept_offer = OFFER.to(AGREEMENT) | NEGOTIATION.to(AGREEMENT)
    reject_offer = OFFER.to(CANCELLED) | NEGOTIATION.to(CANCELLED)

    # Documentation and verification gates
    complete_agreement = AGREEMENT.to(KYC2_VERIFICATION)
    enter_fund_protection = KYC2_VERIFICATION.to(FUND_PROTECTION)

    # Settlement
    release_to_escrow = FUND_PROTECTION.to(ESCROW)
    begin_closing = ESCROW.to(CLOSING)
    complete_closing = CLOSING.to(COMPLETED)

    # Cancellation
    cancel = (
        OFFER.to(CANCELLED)
        | NEGOTIATION.to(CANCELLED)
        | AGREEMENT.to(CANCELLED)
        | KYC2_VERIFICATION.to(CANCELLED)
        | FUND_PROTECTION.to(CANCELLED)
        | ESCROW.to(CANCELLED)
        | CLOSING.to(CANCELLED)
    )

    def __init__(self, current_status: str = "OFFER") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current TransactionStatus value (e.g., "AGREEMENT").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches TransactionStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = TransactionStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
