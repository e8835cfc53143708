"""Step Generator — turns a transaction's agreed terms into fund-protection steps.

Two phases, so callers can put the linearizing status write between them:

    plan = await generator.plan(transaction, currency)   # validation + provider I/O
    ... conditional status update on the transaction ...
    steps = await generator.persist(transaction, plan)    # delete-then-insert

Every failure in ``plan`` (InvalidCurrency, WalletNotFound, ProviderUnavailable,
ValidationFailed) happens before any step row is touched. Wallet addresses
obtained during planning are written through the same session and roll back
with everything else if a later phase fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from property_clearinghouse.config import get_settings
from property_clearinghouse.domain.enums import PaymentMethod
from property_clearinghouse.domain.exceptions import (
    PreconditionFailedError,
    ProviderUnavailableError,
    WalletNotFoundError,
)
from property_clearinghouse.domain.fund_protection import (
    RATE_FALLBACK,
    FundProtectionPlan,
    WalletRef,
    normalize_currency,
    plan_fund_protection,
    resolve_percentages,
)
from property_clearinghouse.infrastructure.database.orm_models import FundProtectionStep
from property_clearinghouse.infrastructure.database.repositories import (
    StepRepository,
    UserRepository,
    WalletRepository,
)
from property_clearinghouse.infrastructure.payment_provider import (
    PaymentProviderError,
    parse_rate,
)
from property_clearinghouse.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_clearinghouse.domain.ports import PaymentProvider
    from property_clearinghouse.infrastructure.database.orm_models import (
        Transaction,
        Wallet,
    )
    from property_clearinghouse.infrastructure.redis_client import ExchangeRateCache

logger = get_logger(__name__)


class StepGenerator:
    """Plans and persists the ordered step list for one transaction."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider | None = None,
        rate_cache: ExchangeRateCache | None = None,
        supported_currencies: list[str] | None = None,
        fiat_currency: str | None = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._provider = provider
        self._rate_cache = rate_cache
        self._supported = supported_currencies or settings.supported_currency_list
        self._fiat_currency = (fiat_currency or settings.settlement_fiat_currency).upper()
        self._wallet_repo = WalletRepository(session)
        self._user_repo = UserRepository(session)
        self._step_repo = StepRepository(session)

    @property
    def supported_currencies(self) -> list[str]:
        return list(self._supported)

    # ------------------------------------------------------------------
    # Phase 1: plan
    # ------------------------------------------------------------------

    async def plan(self, transaction: Transaction, currency: str | None) -> FundProtectionPlan:
        """Validate inputs, resolve wallets and rate, and compute the steps.

        Raises:
            ValidationFailedError: HYBRID percentages missing or not summing to 100.
            PreconditionFailedError: No agreed price yet.
            InvalidCurrencyError: Crypto rail with a currency outside the allow-list.
            WalletNotFoundError: Buyer or seller has no wallet for the currency.
            ProviderUnavailableError: A deposit address could not be obtained.
        """
        payment_method = PaymentMethod(transaction.payment_method)
        crypto_pct, fiat_pct = resolve_percentages(
            payment_method, transaction.crypto_percentage, transaction.fiat_percentage
        )
        if transaction.agreed_price is None:
            raise PreconditionFailedError(
                "agreed_price", "Transaction has no agreed price to protect"
            )

        code: str | None = None
        buyer_wallet = seller_wallet = None
        rate: Decimal | None = None

        if crypto_pct > 0:
            code = normalize_currency(currency, self._supported)
            buyer = await self._find_wallet(transaction.buyer_id, "buyer", code)
            seller = await self._find_wallet(transaction.seller_id, "seller", code)
            buyer_wallet = await self._ensure_address(buyer, transaction.buyer_id, "buyer")
            seller_wallet = await self._ensure_address(seller, transaction.seller_id, "seller")
            rate = await self._exchange_rate(code)

        plan = plan_fund_protection(
            agreed_price=transaction.agreed_price,
            payment_method=payment_method,
            crypto_percentage=crypto_pct,
            fiat_percentage=fiat_pct,
            currency=code,
            exchange_rate=rate,
            buyer_wallet=buyer_wallet,
            seller_wallet=seller_wallet,
            fiat_currency=self._fiat_currency,
        )

        if code is not None and plan.rate_source == RATE_FALLBACK:
            logger.warning(
                "fund_protection.rate_fallback",
                transaction_id=str(transaction.id),
                currency=code,
                crypto_eur_amount=str(plan.crypto_eur_amount),
            )
        return plan

    async def _find_wallet(self, user_id: uuid.UUID, party: str, currency: str) -> Wallet:
        wallet = await self._wallet_repo.get_for_user(user_id, currency)
        if wallet is None:
            raise WalletNotFoundError(party, currency)
        return wallet

    async def _ensure_address(self, wallet: Wallet, user_id: uuid.UUID, party: str) -> WalletRef:
        """Return the wallet ref, enriching it with a deposit address if missing."""
        if wallet.address:
            return WalletRef(wallet.provider_wallet_id, wallet.address)

        if self._provider is None:
            raise ProviderUnavailableError(
                "Payment provider is not configured", operation="enrich_wallet"
            )
        user = await self._user_repo.get_by_id(user_id)
        if user is None or not user.provider_user_id:
            raise ProviderUnavailableError(
                f"The {party} has no account at the payment provider",
                operation="enrich_wallet",
            )

        try:
            address = await self._provider.enrich_wallet(
                user.provider_user_id, wallet.provider_wallet_id
            )
        except PaymentProviderError as exc:
            logger.error(
                "fund_protection.enrich_failed",
                party=party,
                currency=wallet.currency,
                error=str(exc),
            )
            raise ProviderUnavailableError(
                f"Unable to generate a {wallet.currency} deposit address for the {party}. "
                "Please try again later.",
                operation="enrich_wallet",
            ) from exc

        await self._wallet_repo.set_address(wallet, address)
        logger.info(
            "fund_protection.address_generated",
            party=party,
            currency=wallet.currency,
        )
        return WalletRef(wallet.provider_wallet_id, address)

    async def _exchange_rate(self, currency: str) -> Decimal | None:
        """Return the live sell rate, or None to signal the 1:1 fallback.

        A cached table that lacks the pair is refetched once before giving up.
        """
        pair = f"{currency}{self._fiat_currency}"
        if self._rate_cache is not None:
            cached = await self._rate_cache.get()
            if cached is not None:
                rate = parse_rate(cached, currency, self._fiat_currency)
                if rate is not None:
                    return rate
                logger.info("fund_protection.rate_cache_incomplete", pair=pair)

        rates = await self._fetch_rates()
        if rates is None:
            return None
        rate = parse_rate(rates, currency, self._fiat_currency)
        if rate is None:
            logger.warning("fund_protection.rate_missing", pair=pair)
        return rate

    async def _fetch_rates(self) -> dict | None:
        if self._provider is None:
            return None
        try:
            rates = await self._provider.get_exchange_rates()
        except PaymentProviderError as exc:
            logger.warning("fund_protection.rate_fetch_failed", error=str(exc))
            return None
        if self._rate_cache is not None:
            await self._rate_cache.set(rates)
        return rates

    # ------------------------------------------------------------------
    # Phase 2: persist
    # ------------------------------------------------------------------

    async def persist(
        self, transaction: Transaction, plan: FundProtectionPlan
    ) -> list[FundProtectionStep]:
        """Replace every step of the transaction with the planned ones."""
        rows = [
            FundProtectionStep(
                step_number=p.step_number,
                step_type=p.step_type.value,
                description=p.description,
                user_type=p.user_type.value,
                status=p.status.value,
                amount=p.amount,
                currency=p.currency,
                eur_amount=p.eur_amount,
                from_wallet_id=p.from_wallet_id,
                to_wallet_id=p.to_wallet_id,
            )
            for p in plan.steps
        ]
        steps = await self._step_repo.replace_all(transaction.id, rows)
        logger.info(
            "fund_protection.steps_persisted",
            transaction_id=str(transaction.id),
            count=len(steps),
            currency=plan.currency,
        )
        return steps
