"""Domain exceptions for the Property Clearinghouse.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
Each carries a stable ``code`` the UI can switch on, plus a human-readable message.
"""

from __future__ import annotations


class ClearinghouseError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str = "CLEARINGHOUSE_ERROR",
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# --- Identity & Access ---


class UnauthorizedError(ClearinghouseError):
    """Raised when the request carries no usable session identity."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


class ForbiddenError(ClearinghouseError):
    """Raised when the caller's role or party does not permit the action."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


# --- Lookup ---


class NotFoundError(ClearinghouseError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            code=f"{entity.upper()}_NOT_FOUND",
            details={"id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__("transaction", transaction_id)


class StepNotFoundError(NotFoundError):
    def __init__(self, step_id: str) -> None:
        super().__init__("step", step_id)


# --- Validation & Preconditions ---


class ValidationFailedError(ClearinghouseError):
    """Raised when caller-supplied input is malformed (prices, percentages, types)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_FAILED",
            details={"field": field} if field else None,
        )


class PreconditionFailedError(ClearinghouseError):
    """Raised when persisted state does not yet allow the action.

    ``precondition`` names the missing requirement so the UI can direct the
    user (e.g. ``seller_mediation_signed``, ``buyer_kyc2_passed``).
    """

    def __init__(self, precondition: str, message: str) -> None:
        super().__init__(
            message=message,
            code="PRECONDITION_FAILED",
            details={"precondition": precondition},
        )
        self.precondition = precondition


# --- Concurrency & State Machine ---


class ConflictError(ClearinghouseError):
    """Raised when the transaction moved underneath the caller.

    The caller should re-fetch and retry once.
    """

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message=message, code=code)


class InvalidStateTransitionError(ConflictError):
    """Raised when the requested action is not legal from the current status.

    Example: OFFER -> ESCROW (must go through AGREEMENT, KYC2_VERIFICATION, ...)
    """

    def __init__(self, current_state: str, attempted_action: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_action} from {current_state}",
            code="INVALID_STATE_TRANSITION",
        )
        self.details = {"current_state": current_state, "action": attempted_action}
        self.current_state = current_state
        self.attempted_action = attempted_action


# --- Fund Protection ---


class FundProtectionError(ClearinghouseError):
    """Base exception for fund-protection initialization failures.

    All of these abort without creating any steps and are safe to retry
    once the underlying cause is fixed.
    """


class InvalidCurrencyError(FundProtectionError):
    def __init__(self, currency: str, supported: list[str]) -> None:
        super().__init__(
            message=f"Unsupported settlement currency: {currency}",
            code="INVALID_CURRENCY",
            details={"currency": currency, "supported": supported},
        )


class WalletNotFoundError(FundProtectionError):
    """Raised when a party has no custodial wallet row for the currency."""

    def __init__(self, party: str, currency: str) -> None:
        super().__init__(
            message=f"{party.capitalize()} has no {currency} wallet",
            code="WALLET_NOT_FOUND",
            details={"party": party, "currency": currency},
        )


class ProviderUnavailableError(FundProtectionError):
    """Raised when the payment provider could not supply what was needed."""

    def __init__(self, message: str, operation: str) -> None:
        super().__init__(
            message=message,
            code="PROVIDER_UNAVAILABLE",
            details={"operation": operation},
        )


# --- Step Completion ---


class StepOutOfOrderError(ClearinghouseError):
    def __init__(self, step_number: int, blocking_step: int) -> None:
        super().__init__(
            message=(
                f"Step {step_number} cannot be completed before step "
                f"{blocking_step} is completed"
            ),
            code="STEP_OUT_OF_ORDER",
            details={"step_number": step_number, "blocking_step": blocking_step},
        )


class StepAlreadyCompletedError(ClearinghouseError):
    def __init__(self, step_id: str) -> None:
        super().__init__(
            message=f"Step already completed: {step_id}",
            code="STEP_ALREADY_COMPLETED",
            details={"id": step_id},
        )
