"""Domain layer — pure business logic with zero framework dependencies."""

from property_clearinghouse.domain.enums import (
    PartyRole,
    PaymentMethod,
    StepStatus,
    StepType,
    TransactionAction,
    TransactionStatus,
)
from property_clearinghouse.domain.exceptions import (
    ClearinghouseError,
    ConflictError,
    ForbiddenError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    TransactionNotFoundError,
)
from property_clearinghouse.domain.fund_protection import (
    FundProtectionPlan,
    PlannedStep,
    WalletRef,
    plan_fund_protection,
)
from property_clearinghouse.domain.state_machine import (
    TransactionStateMachine,
    validate_transition,
)
from property_clearinghouse.domain.transitions import (
    TRANSITION_RULES,
    AgreementFlags,
    TransitionContext,
    TransitionRule,
)

__all__ = [
    "PartyRole",
    "PaymentMethod",
    "StepStatus",
    "StepType",
    "TransactionAction",
    "TransactionStatus",
    "ClearinghouseError",
    "ConflictError",
    "ForbiddenError",
    "InvalidStateTransitionError",
    "PreconditionFailedError",
    "TransactionNotFoundError",
    "FundProtectionPlan",
    "PlannedStep",
    "WalletRef",
    "plan_fund_protection",
    "TransactionStateMachine",
    "validate_transition",
    "TRANSITION_RULES",
    "AgreementFlags",
    "TransitionContext",
    "TransitionRule",
]
