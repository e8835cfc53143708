"""Fund Protection Service — step generation and step completion tracking.

Coordinates between:
    - Step generator (plan + delete-then-insert of the step list)
    - Step repository (conditional status writes on individual steps)
    - Transaction service (the automatic RELEASE_TO_ESCROW after the last step)
    - Notification service (counterparty notices)

Step completion is strictly ordered: a step can only be completed by its
owner once every lower-numbered step is COMPLETED.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from property_clearinghouse.domain.enums import (
    HistoryEntryType,
    PartyRole,
    StepStatus,
    StepType,
    TransactionStatus,
)
from property_clearinghouse.domain.exceptions import (
    ForbiddenError,
    PreconditionFailedError,
    ProviderUnavailableError,
    StepAlreadyCompletedError,
    StepNotFoundError,
    StepOutOfOrderError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from property_clearinghouse.domain.fund_protection import blocking_step, current_step_number
from property_clearinghouse.domain.transitions import resolve_party
from property_clearinghouse.infrastructure.database.repositories import (
    HistoryRepository,
    StepRepository,
    TransactionRepository,
    UserRepository,
)
from property_clearinghouse.infrastructure.payment_provider import PaymentProviderError
from property_clearinghouse.logging_config import get_logger
from property_clearinghouse.services.notification_service import NotificationService
from property_clearinghouse.services.step_generator import StepGenerator
from property_clearinghouse.services.transaction_service import TransactionService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.fund_protection import FundProtectionPlan
    from property_clearinghouse.domain.ports import Actor, PaymentProvider
    from property_clearinghouse.infrastructure.database.orm_models import (
        FundProtectionStep,
        Transaction,
    )
    from property_clearinghouse.infrastructure.redis_client import ExchangeRateCache

logger = get_logger(__name__)

_COMPLETABLE_FROM = (StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.FAILED)


@dataclass(frozen=True)
class Initialization:
    """What initialize_fund_protection hands back to the caller."""

    transaction: Transaction
    plan: FundProtectionPlan
    steps: list[FundProtectionStep]


@dataclass(frozen=True)
class StepCompletion:
    step: FundProtectionStep
    transaction: Transaction
    released: bool


class FundProtectionService:
    """Generates fund-protection steps and tracks their completion."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider | None = None,
        rate_cache: ExchangeRateCache | None = None,
        notifications: NotificationService | None = None,
        transactions: TransactionService | None = None,
        step_generator: StepGenerator | None = None,
    ) -> None:
        self._session = session
        self._tx_repo = TransactionRepository(session)
        self._step_repo = StepRepository(session)
        self._history_repo = HistoryRepository(session)
        self._user_repo = UserRepository(session)
        self._provider = provider
        self._notifications = notifications or NotificationService(session)
        self._generator = step_generator or StepGenerator(
            session, provider=provider, rate_cache=rate_cache
        )
        self._transactions = transactions or TransactionService(
            session,
            notifications=self._notifications,
            step_generator=self._generator,
        )

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    # ------------------------------------------------------------------
    # Step generation
    # ------------------------------------------------------------------

    async def initialize_fund_protection(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        currency: str | None,
    ) -> Initialization:
        """Generate (or regenerate) the step list for a transaction.

        Any existing steps are replaced, including completed ones. The plan
        is computed first, then the transaction version is bumped, then the
        steps are swapped, all inside the caller's database transaction.
        """
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._party_of(transaction, actor)
        if party != PartyRole.BUYER:
            raise ForbiddenError("Only the buyer can initialize fund protection")
        if transaction.status != TransactionStatus.FUND_PROTECTION.value:
            raise PreconditionFailedError(
                "status_fund_protection",
                f"Transaction must be in FUND_PROTECTION (currently {transaction.status})",
            )

        existing = await self._step_repo.get_by_transaction(transaction.id)
        completed = [s.step_number for s in existing if s.status == StepStatus.COMPLETED.value]
        if completed:
            logger.warning(
                "fund_protection.regenerating_completed_steps",
                transaction_id=str(transaction.id),
                completed_steps=completed,
            )

        plan = await self._generator.plan(transaction, currency)
        await self._tx_repo.conditional_update(
            transaction,
            TransactionStatus.FUND_PROTECTION,
            settlement_currency=plan.currency,
        )
        steps = await self._generator.persist(transaction, plan)

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.FUND_PROTECTION_INITIALIZED,
            from_status=TransactionStatus.FUND_PROTECTION,
            to_status=TransactionStatus.FUND_PROTECTION,
            actor=str(actor.user_id),
            actor_role=party.value,
            metadata={
                "currency": plan.currency,
                "payment_method": plan.payment_method.value,
                "step_count": len(steps),
                "crypto_eur_amount": str(plan.crypto_eur_amount),
                "fiat_eur_amount": str(plan.fiat_eur_amount),
                "crypto_amount": str(plan.crypto_amount),
                "exchange_rate": str(plan.exchange_rate),
                "rate_source": plan.rate_source,
                "replaced_steps": len(existing),
            },
        )
        await self._notifications.fund_protection_update(
            transaction,
            transaction.seller_id,
            "Fund Protection Initialized",
            f"The buyer set up {len(steps)} fund protection steps in {plan.currency}",
            currency=plan.currency,
            step_count=len(steps),
        )

        logger.info(
            "fund_protection.initialized",
            transaction_id=str(transaction.id),
            currency=plan.currency,
            step_count=len(steps),
            rate_source=plan.rate_source,
        )
        return Initialization(transaction=transaction, plan=plan, steps=steps)

    # ------------------------------------------------------------------
    # Step tracking
    # ------------------------------------------------------------------

    async def start_step(self, step_id: uuid.UUID, actor: Actor) -> FundProtectionStep:
        """Mark a step IN_PROGRESS (owner only, in order). Idempotent."""
        step, transaction, party = await self._load_for_owner(step_id, actor)
        if step.status == StepStatus.IN_PROGRESS.value:
            return step
        await self._require_in_order(step)

        moved = await self._step_repo.conditional_status_update(
            step,
            (StepStatus.PENDING, StepStatus.FAILED),
            status=StepStatus.IN_PROGRESS.value,
            started_at=datetime.now(UTC),
            failure_reason=None,
        )
        if not moved:
            step = await self._step_repo.get_by_id(step.id)
            if step.status == StepStatus.COMPLETED.value:
                raise StepAlreadyCompletedError(str(step.id))
            return step

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.STEP_STARTED,
            from_status=TransactionStatus.FUND_PROTECTION,
            to_status=TransactionStatus.FUND_PROTECTION,
            actor=str(actor.user_id),
            actor_role=party.value,
            metadata={"step_id": str(step.id), "step_number": step.step_number},
        )
        logger.info(
            "fund_protection.step_started",
            transaction_id=str(transaction.id),
            step_number=step.step_number,
        )
        return step

    async def complete_step(
        self,
        step_id: uuid.UUID,
        actor: Actor,
        tx_hash: str | None = None,
        proof_url: str | None = None,
    ) -> StepCompletion:
        """Complete a step; releases to ESCROW when it was the last one.

        A CRYPTO_DEPOSIT step only completes once the provider reports at
        least the step amount in the buyer's account for that currency.
        """
        step, transaction, party = await self._load_for_owner(step_id, actor)
        await self._require_in_order(step)
        if step.step_type == StepType.CRYPTO_DEPOSIT.value:
            await self._require_deposit_received(step, transaction)

        completed = await self._step_repo.conditional_status_update(
            step,
            _COMPLETABLE_FROM,
            status=StepStatus.COMPLETED.value,
            completed_at=datetime.now(UTC),
            completed_by=actor.user_id,
            tx_hash=tx_hash,
            proof_url=proof_url,
            failure_reason=None,
        )
        if not completed:
            raise StepAlreadyCompletedError(str(step.id))

        # Bump the transaction version so a concurrent regeneration conflicts.
        await self._tx_repo.conditional_update(transaction, TransactionStatus.FUND_PROTECTION)

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.STEP_COMPLETED,
            from_status=TransactionStatus.FUND_PROTECTION,
            to_status=TransactionStatus.FUND_PROTECTION,
            actor=str(actor.user_id),
            actor_role=party.value,
            metadata={
                "step_id": str(step.id),
                "step_number": step.step_number,
                "step_type": step.step_type,
                "tx_hash": tx_hash,
                "proof_url": proof_url,
            },
        )
        counterparty_id = (
            transaction.seller_id if party == PartyRole.BUYER else transaction.buyer_id
        )
        await self._notifications.fund_protection_update(
            transaction,
            counterparty_id,
            "Fund Protection Step Completed",
            f"Step {step.step_number} ({step.description}) was completed",
            step_number=step.step_number,
            step_type=step.step_type,
        )
        logger.info(
            "fund_protection.step_completed",
            transaction_id=str(transaction.id),
            step_number=step.step_number,
            step_type=step.step_type,
            party=party.value,
        )

        steps = await self._step_repo.get_by_transaction(transaction.id)
        released = False
        if all(s.status == StepStatus.COMPLETED.value for s in steps):
            transaction = await self._transactions.release_to_escrow(transaction)
            released = True
            logger.info("fund_protection.released_to_escrow", transaction_id=str(transaction.id))

        return StepCompletion(step=step, transaction=transaction, released=released)

    async def fail_step(
        self,
        step_id: uuid.UUID,
        actor: Actor,
        reason: str,
    ) -> FundProtectionStep:
        """Admin marks a step FAILED; its owner may complete it later."""
        if not actor.is_admin:
            raise ForbiddenError("Only an administrator can mark a step as failed")
        if not reason or not reason.strip():
            raise ValidationFailedError("A failure reason is required", field="reason")

        step = await self._get_step_or_raise(step_id)
        transaction = await self._get_fresh_or_raise(step.transaction_id)
        self._require_fund_protection(transaction)

        failed = await self._step_repo.conditional_status_update(
            step,
            (StepStatus.PENDING, StepStatus.IN_PROGRESS),
            status=StepStatus.FAILED.value,
            failure_reason=reason.strip(),
        )
        if not failed:
            step = await self._step_repo.get_by_id(step.id)
            if step.status == StepStatus.COMPLETED.value:
                raise StepAlreadyCompletedError(str(step.id))
            return step

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.STEP_FAILED,
            from_status=TransactionStatus.FUND_PROTECTION,
            to_status=TransactionStatus.FUND_PROTECTION,
            actor=str(actor.user_id),
            actor_role=PartyRole.ADMIN.value,
            notes=reason.strip(),
            metadata={"step_id": str(step.id), "step_number": step.step_number},
        )
        owner_id = (
            transaction.buyer_id if step.user_type == PartyRole.BUYER.value else transaction.seller_id
        )
        await self._notifications.fund_protection_update(
            transaction,
            owner_id,
            "Fund Protection Step Failed",
            f"Step {step.step_number} ({step.description}) failed: {reason.strip()}",
            step_number=step.step_number,
        )
        logger.warning(
            "fund_protection.step_failed",
            transaction_id=str(transaction.id),
            step_number=step.step_number,
            reason=reason.strip(),
        )
        return step

    async def get_fund_protection_status(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> dict:
        """Ordered steps plus progress, as polled by the UI."""
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._party_of(transaction, actor)
        steps = await self._step_repo.get_by_transaction(transaction.id)

        statuses = [(s.step_number, StepStatus(s.status)) for s in steps]
        current = current_step_number(statuses)
        completed = sum(1 for _, status in statuses if status == StepStatus.COMPLETED)
        total = len(steps)
        current_step = next((s for s in steps if s.step_number == current), None)

        return {
            "transaction_id": str(transaction.id),
            "status": transaction.status,
            "settlement_currency": transaction.settlement_currency,
            "initialized": total > 0,
            "user_role": party.value,
            "steps": steps,
            "current_step": current,
            "progress": {
                "completed": completed,
                "total": total,
                "percentage": round(completed * 100 / total) if total else 0,
            },
            "needs_user_action": current_step is not None
            and current_step.user_type == party.value,
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load_for_owner(
        self, step_id: uuid.UUID, actor: Actor
    ) -> tuple[FundProtectionStep, Transaction, PartyRole]:
        step = await self._get_step_or_raise(step_id)
        transaction = await self._get_fresh_or_raise(step.transaction_id)
        party = self._party_of(transaction, actor)
        if party.value != step.user_type:
            raise ForbiddenError(
                f"Step {step.step_number} must be completed by the {step.user_type.lower()}"
            )
        if step.status == StepStatus.COMPLETED.value:
            raise StepAlreadyCompletedError(str(step.id))
        self._require_fund_protection(transaction)
        return step, transaction, party

    async def _require_in_order(self, step: FundProtectionStep) -> None:
        siblings = await self._step_repo.get_by_transaction(step.transaction_id)
        blocker = blocking_step(
            step.step_number, [(s.step_number, StepStatus(s.status)) for s in siblings]
        )
        if blocker is not None:
            raise StepOutOfOrderError(step.step_number, blocker)

    async def _require_deposit_received(
        self, step: FundProtectionStep, transaction: Transaction
    ) -> None:
        if self._provider is None:
            raise ProviderUnavailableError(
                "Payment provider is not configured", operation="get_available_balance"
            )
        buyer = await self._user_repo.get_by_id(transaction.buyer_id)
        if buyer is None or not buyer.provider_user_id or not step.to_wallet_id:
            raise PreconditionFailedError(
                "deposit_received",
                f"No {step.currency} account to check the deposit against",
            )

        try:
            available = await self._provider.get_available_balance(
                buyer.provider_user_id, step.to_wallet_id
            )
        except PaymentProviderError as exc:
            logger.error(
                "fund_protection.balance_check_failed",
                transaction_id=str(transaction.id),
                currency=step.currency,
                error=str(exc),
            )
            raise ProviderUnavailableError(
                f"Unable to check the {step.currency} balance. Please try again later.",
                operation="get_available_balance",
            ) from exc

        if available < step.amount:
            logger.info(
                "fund_protection.deposit_insufficient",
                transaction_id=str(transaction.id),
                currency=step.currency,
                available=available,
                required=step.amount,
            )
            raise PreconditionFailedError(
                "deposit_received",
                f"Insufficient balance: {available} {step.currency} available, "
                f"{step.amount} {step.currency} required",
            )

    @staticmethod
    def _require_fund_protection(transaction: Transaction) -> None:
        if transaction.status != TransactionStatus.FUND_PROTECTION.value:
            raise PreconditionFailedError(
                "status_fund_protection",
                f"Transaction must be in FUND_PROTECTION (currently {transaction.status})",
            )

    async def _get_step_or_raise(self, step_id: uuid.UUID) -> FundProtectionStep:
        step = await self._step_repo.get_by_id(step_id)
        if step is None:
            raise StepNotFoundError(str(step_id))
        return step

    async def _get_fresh_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self._tx_repo.get_by_id(transaction_id, fresh=True)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    @staticmethod
    def _party_of(transaction: Transaction, actor: Actor) -> PartyRole:
        return resolve_party(
            str(actor.user_id),
            actor.is_admin,
            str(transaction.buyer_id),
            str(transaction.seller_id),
        )
