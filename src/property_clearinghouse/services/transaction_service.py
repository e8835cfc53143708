"""Transaction Service — the authoritative stage machine for a property deal.

This is the application layer that coordinates between:
    - Domain state machine (is the move legal from the current status?)
    - Transition table (may this caller make it, and do the preconditions hold?)
    - Repositories (conditional writes, history, counter-offers, documents)
    - Step generator (invoked on entry into FUND_PROTECTION)
    - Notification service (counterparty notices)

Every operation re-reads the transaction from the database before checking
anything, and every write to the transaction row is a conditional UPDATE on
(id, status, version). Of two concurrent attempts from the same state, one
wins and the other gets ConflictError.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from property_clearinghouse.domain.enums import (
    DocumentType,
    HistoryEntryType,
    KycStatus,
    PartyRole,
    PaymentMethod,
    StepStatus,
    TransactionAction,
    TransactionStatus,
)
from property_clearinghouse.domain.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    PreconditionFailedError,
    TransactionNotFoundError,
    ValidationFailedError,
)
from property_clearinghouse.domain.fund_protection import resolve_percentages
from property_clearinghouse.domain.state_machine import (
    TransactionStateMachine,
    validate_transition,
)
from property_clearinghouse.domain.transitions import (
    AgreementFlags,
    TransitionContext,
    counterparty,
    get_rule,
    resolve_party,
)
from property_clearinghouse.infrastructure.database.orm_models import (
    Document,
    Transaction,
)
from property_clearinghouse.infrastructure.database.repositories import (
    CounterOfferRepository,
    DocumentRepository,
    HistoryRepository,
    PropertyRepository,
    StepRepository,
    TransactionRepository,
    UserRepository,
)
from property_clearinghouse.logging_config import get_logger
from property_clearinghouse.services.kyc_service import DatabaseKycStatusReader
from property_clearinghouse.services.notification_service import NotificationService
from property_clearinghouse.services.step_generator import StepGenerator

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.ports import Actor, KycStatusReader
    from property_clearinghouse.infrastructure.database.orm_models import (
        CounterOffer,
        TransactionHistoryEntry,
    )

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM"

OVERRIDABLE_FLAGS = (
    "buyer_signed",
    "seller_signed",
    "has_representation_doc",
    "buyer_mediation_signed",
    "seller_mediation_signed",
    "buyer_confirmed",
    "seller_confirmed",
)

_TIMESTAMP_ON_ENTRY = {
    TransactionStatus.AGREEMENT: "acceptance_date",
    TransactionStatus.FUND_PROTECTION: "fund_protection_date",
    TransactionStatus.ESCROW: "escrow_date",
    TransactionStatus.COMPLETED: "completion_date",
    TransactionStatus.CANCELLED: "cancelled_at",
}


def agreement_flags(transaction: Transaction) -> AgreementFlags:
    return AgreementFlags(**{name: getattr(transaction, name) for name in OVERRIDABLE_FLAGS})


class TransactionService:
    """Manages the property transaction lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService | None = None,
        kyc_reader: KycStatusReader | None = None,
        step_generator: StepGenerator | None = None,
    ) -> None:
        self._session = session
        self._tx_repo = TransactionRepository(session)
        self._counter_repo = CounterOfferRepository(session)
        self._history_repo = HistoryRepository(session)
        self._document_repo = DocumentRepository(session)
        self._step_repo = StepRepository(session)
        self._user_repo = UserRepository(session)
        self._property_repo = PropertyRepository(session)
        self._notifications = notifications or NotificationService(session)
        self._kyc = kyc_reader or DatabaseKycStatusReader(session)
        self._step_generator = step_generator or StepGenerator(session)

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    # ------------------------------------------------------------------
    # Offer creation
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        actor: Actor,
        property_id: uuid.UUID,
        offer_price: Decimal,
        payment_method: PaymentMethod,
        crypto_percentage: int | None = None,
        fiat_percentage: int | None = None,
        message: str | None = None,
    ) -> Transaction:
        """Create a transaction in OFFER with the caller as buyer."""
        if offer_price is None or offer_price <= 0:
            raise ValidationFailedError(
                "Offer price must be greater than zero", field="offer_price"
            )
        crypto_pct, fiat_pct = resolve_percentages(
            payment_method, crypto_percentage, fiat_percentage
        )

        kyc = await self._kyc.get_status(actor.user_id)
        if kyc.tier1 != KycStatus.PASSED:
            raise PreconditionFailedError(
                "buyer_kyc_passed",
                "Complete identity verification before making an offer",
            )

        prop = await self._property_repo.get_by_id(property_id)
        if prop is None:
            raise NotFoundError("property", str(property_id))
        if not prop.is_approved:
            raise PreconditionFailedError(
                "property_approved", "This property is not yet approved for offers"
            )
        if prop.seller_id == actor.user_id:
            raise ForbiddenError("You cannot make an offer on your own property")
        if await self._tx_repo.find_active(actor.user_id, prop.id) is not None:
            raise ConflictError("You already have an active transaction for this property")

        transaction = await self._tx_repo.create(
            Transaction(
                property_id=prop.id,
                buyer_id=actor.user_id,
                seller_id=prop.seller_id,
                status=TransactionStatus.OFFER.value,
                offer_price=offer_price,
                payment_method=payment_method.value,
                crypto_percentage=crypto_pct,
                fiat_percentage=fiat_pct,
                offer_message=message,
            )
        )
        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.OFFER_CREATED,
            from_status=None,
            to_status=TransactionStatus.OFFER,
            actor=str(actor.user_id),
            actor_role=PartyRole.BUYER.value,
            notes=message,
            metadata={
                "offer_price": str(offer_price),
                "payment_method": payment_method.value,
                "crypto_percentage": crypto_pct,
                "fiat_percentage": fiat_pct,
            },
        )

        names = await self._names(transaction)
        await self._notifications.new_offer(transaction, names[transaction.buyer_id], prop.title)

        logger.info(
            "transaction.offer_created",
            transaction_id=str(transaction.id),
            property_id=str(prop.id),
            offer_price=str(offer_price),
            payment_method=payment_method.value,
        )
        return transaction

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        action: TransactionAction,
        *,
        price: Decimal | None = None,
        message: str | None = None,
        currency: str | None = None,
        expected_status: TransactionStatus | None = None,
    ) -> Transaction:
        """Move a transaction to its next stage.

        Args:
            price: Counter-offer price (COUNTER_OFFER only).
            message: Free text stored on the history entry (and counter-offer).
            currency: Settlement currency for ENTER_FUND_PROTECTION on crypto or
                hybrid deals. Without it, steps are generated later by the buyer.
            expected_status: Status the caller last saw. A mismatch is a Conflict.

        Raises:
            ForbiddenError, PreconditionFailedError, ValidationFailedError,
            TransactionNotFoundError, ConflictError (incl. InvalidStateTransitionError),
            and the fund-protection errors when steps are generated on entry.
        """
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._party_of(transaction, actor)
        return await self._apply(
            transaction,
            action,
            party=party,
            actor_label=str(actor.user_id),
            price=price,
            message=message,
            currency=currency,
            expected_status=expected_status,
        )

    async def release_to_escrow(self, transaction: Transaction) -> Transaction:
        """System-initiated FUND_PROTECTION -> ESCROW after the last step completes."""
        return await self._apply(
            transaction,
            TransactionAction.RELEASE_TO_ESCROW,
            party=PartyRole.ADMIN,
            actor_label=SYSTEM_ACTOR,
            expected_status=TransactionStatus.FUND_PROTECTION,
        )

    async def _apply(
        self,
        transaction: Transaction,
        action: TransactionAction,
        *,
        party: PartyRole,
        actor_label: str,
        price: Decimal | None = None,
        message: str | None = None,
        currency: str | None = None,
        expected_status: TransactionStatus | None = None,
    ) -> Transaction:
        current = TransactionStatus(transaction.status)
        if expected_status is not None and current != expected_status:
            raise ConflictError(
                f"Transaction is {current.value}, not {expected_status.value}; "
                "re-fetch and retry"
            )

        target = self._fire_transition(current, action)
        ctx, current_price = await self._context(transaction, party, action, price)
        get_rule(action).check(ctx)

        values: dict[str, Any] = {"status": target.value}
        stamp = _TIMESTAMP_ON_ENTRY.get(target)
        if stamp and target != current:
            values[stamp] = datetime.now(UTC)
        if action == TransactionAction.ACCEPT_OFFER:
            values["agreed_price"] = current_price

        plan = None
        if action == TransactionAction.ENTER_FUND_PROTECTION and (
            transaction.payment_method == PaymentMethod.FIAT.value or currency
        ):
            plan = await self._step_generator.plan(transaction, currency)
            values["settlement_currency"] = plan.currency

        await self._tx_repo.conditional_update(transaction, current, **values)

        metadata: dict[str, Any] = {}
        if action == TransactionAction.COUNTER_OFFER:
            counter = await self._counter_repo.create(
                transaction_id=transaction.id,
                offered_by=party.value,
                offered_by_user_id=self._user_id_of(transaction, party),
                price=price,
                message=message,
            )
            metadata.update(price=str(price), round=counter.round_number)
        elif action == TransactionAction.ACCEPT_OFFER:
            metadata["agreed_price"] = str(current_price)
        elif action == TransactionAction.REJECT_OFFER:
            metadata["rejected_price"] = str(current_price)
        if plan is not None:
            steps = await self._step_generator.persist(transaction, plan)
            metadata.update(
                currency=plan.currency,
                step_count=len(steps),
                rate_source=plan.rate_source,
            )

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.TRANSITION,
            from_status=current,
            to_status=target,
            actor=actor_label,
            actor_role=None if actor_label == SYSTEM_ACTOR else party.value,
            action=action.value,
            notes=message,
            metadata=metadata or None,
        )
        await self._notify_transition(
            transaction, action, party, current, target, price, current_price, message
        )

        logger.info(
            "transaction.transitioned",
            transaction_id=str(transaction.id),
            action=action.value,
            from_status=current.value,
            to_status=target.value,
            actor=actor_label,
            version=transaction.version,
        )
        return transaction

    async def _context(
        self,
        transaction: Transaction,
        party: PartyRole,
        action: TransactionAction | None,
        price: Decimal | None = None,
    ) -> tuple[TransitionContext, Decimal]:
        """Load everything the guards need. ``action=None`` loads it all."""
        latest = await self._counter_repo.get_latest(transaction.id)
        latest_by = PartyRole(latest.offered_by) if latest else PartyRole.BUYER
        current_price = latest.price if latest else transaction.offer_price

        buyer_kyc2 = seller_kyc2 = None
        if action in (None, TransactionAction.ENTER_FUND_PROTECTION):
            buyer_kyc2 = (await self._kyc.get_status(transaction.buyer_id)).tier2
            seller_kyc2 = (await self._kyc.get_status(transaction.seller_id)).tier2

        step_statuses: tuple[StepStatus, ...] = ()
        if action in (None, TransactionAction.RELEASE_TO_ESCROW):
            steps = await self._step_repo.get_by_transaction(transaction.id)
            step_statuses = tuple(StepStatus(s.status) for s in steps)

        ctx = TransitionContext(
            status=TransactionStatus(transaction.status),
            party=party,
            latest_offer_by=latest_by,
            flags=agreement_flags(transaction),
            buyer_kyc2=buyer_kyc2,
            seller_kyc2=seller_kyc2,
            step_statuses=step_statuses,
            price=price,
        )
        return ctx, current_price

    async def _notify_transition(
        self,
        transaction: Transaction,
        action: TransactionAction,
        party: PartyRole,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        price: Decimal | None,
        current_price: Decimal,
        message: str | None,
    ) -> None:
        names = await self._names(transaction)
        actor_name = (
            names.get(self._user_id_of(transaction, party), "")
            if party != PartyRole.ADMIN
            else "An administrator"
        )
        for recipient in self._recipients(transaction, party):
            if action == TransactionAction.COUNTER_OFFER:
                await self._notifications.counter_offer(
                    transaction, recipient, actor_name, price, party == PartyRole.BUYER
                )
            elif action == TransactionAction.ACCEPT_OFFER:
                await self._notifications.offer_accepted(transaction, recipient, actor_name)
            elif action == TransactionAction.REJECT_OFFER:
                await self._notifications.offer_rejected(
                    transaction, recipient, actor_name, current_price, reason=message
                )
            else:
                await self._notifications.status_changed(
                    transaction, recipient, from_status, to_status
                )

    # ------------------------------------------------------------------
    # AGREEMENT sub-stages
    # ------------------------------------------------------------------

    async def record_document(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        document_type: DocumentType,
        file_name: str,
        storage_url: str,
    ) -> Document:
        """Record that a document was uploaded to external storage."""
        if not file_name or not file_name.strip():
            raise ValidationFailedError("file_name is required", field="file_name")
        if not storage_url or not storage_url.strip():
            raise ValidationFailedError("storage_url is required", field="storage_url")

        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._party_of(transaction, actor)
        current = TransactionStatus(transaction.status)
        if current.is_terminal:
            raise PreconditionFailedError(
                "transaction_active",
                f"Documents cannot be added to a {current.value} transaction",
            )

        document = await self._document_repo.create(
            Document(
                transaction_id=transaction.id,
                uploaded_by=actor.user_id,
                uploader_role=party.value,
                document_type=document_type.value,
                file_name=file_name.strip(),
                storage_url=storage_url.strip(),
            )
        )
        if (
            document_type == DocumentType.REPRESENTATION_DOCUMENT
            and not transaction.has_representation_doc
        ):
            await self._tx_repo.conditional_update(
                transaction, current, has_representation_doc=True
            )

        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.DOCUMENT_RECORDED,
            from_status=current,
            to_status=current,
            actor=str(actor.user_id),
            actor_role=party.value,
            metadata={"document_id": str(document.id), "document_type": document_type.value},
        )

        names = await self._names(transaction)
        uploader = names.get(actor.user_id, "An administrator")
        for recipient in self._recipients(transaction, party):
            await self._notifications.document_uploaded(
                transaction, recipient, uploader, document_type.value
            )

        logger.info(
            "transaction.document_recorded",
            transaction_id=str(transaction.id),
            document_type=document_type.value,
            party=party.value,
        )
        return document

    async def sign_promissory(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        """Record the caller's promissory signature.

        The signer must already have uploaded a PROMISSORY_AGREEMENT document.
        """
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._require_party(transaction, actor, "sign the promissory agreement")
        self._require_status(transaction, TransactionStatus.AGREEMENT)

        flag = "buyer_signed" if party == PartyRole.BUYER else "seller_signed"
        if getattr(transaction, flag):
            raise ConflictError("You have already signed the promissory agreement")
        uploaded = await self._document_repo.exists(
            transaction.id, DocumentType.PROMISSORY_AGREEMENT, uploaded_by=actor.user_id
        )
        if not uploaded:
            raise PreconditionFailedError(
                "promissory_document_uploaded",
                "Upload your signed promissory agreement before signing",
            )

        await self._update_sub_stage(
            transaction, party, actor, HistoryEntryType.PROMISSORY_SIGNED, **{flag: True}
        )
        both = transaction.buyer_signed and transaction.seller_signed
        await self._notify_counterparty(
            transaction,
            party,
            "Promissory Agreement Signed",
            "Both parties have signed the promissory agreement"
            if both
            else f"The {party.value.lower()} signed the promissory agreement",
            promissory_complete=both,
        )
        return transaction

    async def sign_mediation(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        """Record the caller's mediation signature (promissory must be complete)."""
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._require_party(transaction, actor, "sign the mediation agreement")
        self._require_status(transaction, TransactionStatus.AGREEMENT)

        if not agreement_flags(transaction).promissory_complete:
            raise PreconditionFailedError(
                "promissory_complete",
                "Both parties must sign the promissory agreement first",
            )
        flag = (
            "buyer_mediation_signed" if party == PartyRole.BUYER else "seller_mediation_signed"
        )
        if getattr(transaction, flag):
            raise ConflictError("You have already signed the mediation agreement")

        await self._update_sub_stage(
            transaction, party, actor, HistoryEntryType.MEDIATION_SIGNED, **{flag: True}
        )
        both = agreement_flags(transaction).mediation_complete
        await self._notify_counterparty(
            transaction,
            party,
            "Mediation Agreement Signed",
            "Both parties have signed the mediation agreement"
            if both
            else f"The {party.value.lower()} signed the mediation agreement",
            mediation_complete=both,
        )
        return transaction

    async def confirm_representation(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> Transaction:
        """Record that the caller confirmed their legal representation."""
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._require_party(transaction, actor, "confirm representation")
        self._require_status(transaction, TransactionStatus.AGREEMENT)

        flag = "buyer_confirmed" if party == PartyRole.BUYER else "seller_confirmed"
        if getattr(transaction, flag):
            raise ConflictError("You have already confirmed your representation")

        await self._update_sub_stage(
            transaction, party, actor, HistoryEntryType.REPRESENTATION_CONFIRMED, **{flag: True}
        )
        await self._notify_counterparty(
            transaction,
            party,
            "Representation Confirmed",
            f"The {party.value.lower()} confirmed their legal representation",
        )
        return transaction

    async def override_flags(
        self,
        transaction_id: uuid.UUID,
        actor: Actor,
        flags: dict[str, bool],
        reason: str | None = None,
    ) -> Transaction:
        """Admin-only set/reset of AGREEMENT sub-stage flags."""
        if not actor.is_admin:
            raise ForbiddenError("Only an administrator can override stage flags")
        if not flags:
            raise ValidationFailedError("No flags given", field="flags")
        for name in flags:
            if name not in OVERRIDABLE_FLAGS:
                raise ValidationFailedError(f"Unknown flag: {name}", field=name)

        transaction = await self._get_fresh_or_raise(transaction_id)
        current = TransactionStatus(transaction.status)
        before = {name: getattr(transaction, name) for name in flags}
        changes = {name: bool(v) for name, v in flags.items() if before[name] != bool(v)}
        if not changes:
            return transaction

        await self._tx_repo.conditional_update(transaction, current, **changes)
        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=HistoryEntryType.FLAGS_OVERRIDDEN,
            from_status=current,
            to_status=current,
            actor=str(actor.user_id),
            actor_role=PartyRole.ADMIN.value,
            notes=reason,
            metadata={"before": {k: before[k] for k in changes}, "after": changes},
        )
        logger.warning(
            "transaction.flags_overridden",
            transaction_id=str(transaction.id),
            changes=changes,
            admin=str(actor.user_id),
        )
        return transaction

    async def _update_sub_stage(
        self,
        transaction: Transaction,
        party: PartyRole,
        actor: Actor,
        entry_type: HistoryEntryType,
        **flags: bool,
    ) -> None:
        current = TransactionStatus(transaction.status)
        await self._tx_repo.conditional_update(transaction, current, **flags)
        await self._history_repo.record(
            transaction_id=transaction.id,
            entry_type=entry_type,
            from_status=current,
            to_status=current,
            actor=str(actor.user_id),
            actor_role=party.value,
            metadata=dict(flags),
        )
        logger.info(
            "transaction.sub_stage_updated",
            transaction_id=str(transaction.id),
            entry_type=entry_type.value,
            party=party.value,
        )

    async def _notify_counterparty(
        self,
        transaction: Transaction,
        party: PartyRole,
        title: str,
        message: str,
        **extra: object,
    ) -> None:
        for recipient in self._recipients(transaction, party):
            await self._notifications.stage_update(transaction, recipient, title, message, **extra)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID, actor: Actor) -> Transaction:
        transaction = await self._get_fresh_or_raise(transaction_id)
        self._party_of(transaction, actor)
        return transaction

    async def list_transactions(
        self,
        actor: Actor,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        return await self._tx_repo.list_for_user(actor.user_id, status=status)

    async def get_history(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> list[TransactionHistoryEntry]:
        await self.get_transaction(transaction_id, actor)
        return await self._history_repo.get_by_transaction(transaction_id)

    async def get_counter_offers(
        self, transaction_id: uuid.UUID, actor: Actor
    ) -> list[CounterOffer]:
        await self.get_transaction(transaction_id, actor)
        return await self._counter_repo.get_by_transaction(transaction_id)

    async def get_documents(self, transaction_id: uuid.UUID, actor: Actor) -> list[Document]:
        await self.get_transaction(transaction_id, actor)
        return await self._document_repo.get_by_transaction(transaction_id)

    async def get_status(self, transaction_id: uuid.UUID, actor: Actor) -> dict:
        """Status snapshot polled by the UI.

        ``available_actions`` lists what the caller can do right now;
        ``blocked_actions`` maps actions the caller is allowed to request but
        whose preconditions do not hold yet to the missing precondition.
        """
        transaction = await self._get_fresh_or_raise(transaction_id)
        party = self._party_of(transaction, actor)
        ctx, current_price = await self._context(transaction, party, None)
        status = TransactionStatus(transaction.status)

        available: list[str] = []
        blocked: dict[str, str] = {}
        sm = TransactionStateMachine(current_status=status.value)
        for event_id in sm.get_allowed_events():
            action = TransactionAction(event_id.upper())
            try:
                get_rule(action).check(ctx)
            except ForbiddenError:
                continue
            except PreconditionFailedError as exc:
                blocked[action.value] = exc.precondition
                continue
            except ValidationFailedError:
                # needs caller input (e.g. a counter price), still available
                pass
            available.append(action.value)

        flags = ctx.flags
        completed_steps = sum(1 for s in ctx.step_statuses if s == StepStatus.COMPLETED)
        awaiting = None
        if status.is_pre_agreement:
            awaiting = counterparty(ctx.latest_offer_by).value

        return {
            "transaction_id": str(transaction.id),
            "status": status.value,
            "version": transaction.version,
            "user_role": party.value,
            "is_terminal": status.is_terminal,
            "offer_price": str(transaction.offer_price),
            "current_price": str(current_price),
            "agreed_price": str(transaction.agreed_price)
            if transaction.agreed_price is not None
            else None,
            "payment_method": transaction.payment_method,
            "latest_offer_by": ctx.latest_offer_by.value,
            "awaiting_response_from": awaiting,
            "available_actions": available,
            "blocked_actions": blocked,
            "agreement": {
                **{name: getattr(flags, name) for name in OVERRIDABLE_FLAGS},
                "promissory_complete": flags.promissory_complete,
                "mediation_complete": flags.mediation_complete,
                "documentation_complete": flags.documentation_complete,
            },
            "kyc2": {
                "buyer": ctx.buyer_kyc2.value if ctx.buyer_kyc2 else None,
                "seller": ctx.seller_kyc2.value if ctx.seller_kyc2 else None,
                "ready": ctx.buyer_kyc2 == KycStatus.PASSED
                and ctx.seller_kyc2 == KycStatus.PASSED,
            },
            "fund_protection": {
                "initialized": bool(ctx.step_statuses),
                "total_steps": len(ctx.step_statuses),
                "completed_steps": completed_steps,
                "settlement_currency": transaction.settlement_currency,
            },
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_fresh_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self._tx_repo.get_by_id(transaction_id, fresh=True)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    def _party_of(self, transaction: Transaction, actor: Actor) -> PartyRole:
        return resolve_party(
            str(actor.user_id),
            actor.is_admin,
            str(transaction.buyer_id),
            str(transaction.seller_id),
        )

    def _require_party(self, transaction: Transaction, actor: Actor, what: str) -> PartyRole:
        party = self._party_of(transaction, actor)
        if party == PartyRole.ADMIN:
            raise ForbiddenError(f"Only the buyer or seller can {what}")
        return party

    @staticmethod
    def _require_status(transaction: Transaction, status: TransactionStatus) -> None:
        if transaction.status != status.value:
            raise PreconditionFailedError(
                f"status_{status.value.lower()}",
                f"Transaction must be in {status.value} (currently {transaction.status})",
            )

    @staticmethod
    def _user_id_of(transaction: Transaction, party: PartyRole) -> uuid.UUID | None:
        if party == PartyRole.BUYER:
            return transaction.buyer_id
        if party == PartyRole.SELLER:
            return transaction.seller_id
        return None

    @staticmethod
    def _recipients(transaction: Transaction, party: PartyRole) -> list[uuid.UUID]:
        """Counterparty of a party; both parties when an admin or the system acted."""
        if party == PartyRole.BUYER:
            return [transaction.seller_id]
        if party == PartyRole.SELLER:
            return [transaction.buyer_id]
        return [transaction.buyer_id, transaction.seller_id]

    async def _names(self, transaction: Transaction) -> dict[uuid.UUID, str]:
        users = await self._user_repo.get_many([transaction.buyer_id, transaction.seller_id])
        return {user_id: user.display_name for user_id, user in users.items()}

    def _fire_transition(
        self, current: TransactionStatus, action: TransactionAction
    ) -> TransactionStatus:
        """Validate a state machine transition and return the target status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        from statemachine.exceptions import TransitionNotAllowed

        try:
            new_status = validate_transition(current.value, action.event_name)
        except (TransitionNotAllowed, ValueError) as err:
            raise InvalidStateTransitionError(current.value, action.value) from err
        return TransactionStatus(new_status)
