"""Fund-protection step planning.

Pure, framework-free computation of the ordered payment steps for a
transaction. The service layer resolves wallets and exchange rates (both
need I/O) and hands the results in here; nothing in this module performs
I/O or touches the database.

Monetary math is Decimal throughout. Stored amounts keep full precision;
the ``display_*`` helpers quantize for presentation (EUR 2 dp, crypto 8 dp).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from property_clearinghouse.domain.enums import (
    PaymentMethod,
    StepStatus,
    StepType,
    StepUserType,
)
from property_clearinghouse.domain.exceptions import (
    InvalidCurrencyError,
    ValidationFailedError,
)

HUNDRED = Decimal(100)
EUR_QUANTUM = Decimal("0.01")
CRYPTO_QUANTUM = Decimal("0.00000001")

RATE_LIVE = "live"
RATE_FALLBACK = "fallback"

FUNDING_STEP_TYPES = frozenset({StepType.CRYPTO_DEPOSIT, StepType.FIAT_UPLOAD})
PAYOUT_STEP_TYPES = frozenset({StepType.IBAN_TRANSFER, StepType.FIAT_CONFIRM})


def display_eur(amount: Decimal) -> Decimal:
    return amount.quantize(EUR_QUANTUM, rounding=ROUND_HALF_UP)


def display_crypto(amount: Decimal) -> Decimal:
    return amount.quantize(CRYPTO_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class WalletRef:
    """A party's custodial wallet as the planner needs to see it."""

    provider_wallet_id: str
    address: str | None = None


@dataclass(frozen=True)
class PlannedStep:
    step_number: int
    step_type: StepType
    description: str
    user_type: StepUserType
    amount: Decimal
    currency: str
    eur_amount: Decimal
    from_wallet_id: str | None = None
    to_wallet_id: str | None = None
    status: StepStatus = StepStatus.PENDING


@dataclass(frozen=True)
class FundProtectionPlan:
    """Result of planning: the amounts and the ordered steps."""

    payment_method: PaymentMethod
    currency: str
    crypto_eur_amount: Decimal
    fiat_eur_amount: Decimal
    crypto_amount: Decimal
    exchange_rate: Decimal
    rate_source: str
    steps: tuple[PlannedStep, ...]

    @property
    def buyer_eur_total(self) -> Decimal:
        """EUR value the buyer pays in across all rails."""
        return sum(
            (s.eur_amount for s in self.steps if s.step_type in FUNDING_STEP_TYPES),
            Decimal(0),
        )

    @property
    def seller_eur_total(self) -> Decimal:
        """EUR value the seller receives across all rails."""
        return sum(
            (s.eur_amount for s in self.steps if s.step_type in PAYOUT_STEP_TYPES),
            Decimal(0),
        )


def resolve_percentages(
    payment_method: PaymentMethod,
    crypto_percentage: int | None,
    fiat_percentage: int | None,
) -> tuple[int, int]:
    """Return the (crypto, fiat) split for a payment method.

    Pure methods are 100/0 regardless of stored percentages. HYBRID must carry
    two percentages in [0, 100] summing to exactly 100.

    Raises:
        ValidationFailedError: If a HYBRID split is missing or invalid.
    """
    if payment_method == PaymentMethod.FIAT:
        return 0, 100
    if payment_method == PaymentMethod.CRYPTO:
        return 100, 0

    if crypto_percentage is None or fiat_percentage is None:
        raise ValidationFailedError(
            "Hybrid payments require both crypto and fiat percentages",
            field="crypto_percentage",
        )
    for name, value in (
        ("crypto_percentage", crypto_percentage),
        ("fiat_percentage", fiat_percentage),
    ):
        if not 0 <= value <= 100:
            raise ValidationFailedError(f"{name} must be between 0 and 100", field=name)
    if crypto_percentage + fiat_percentage != 100:
        raise ValidationFailedError(
            "Crypto and fiat percentages must sum to 100",
            field="crypto_percentage",
        )
    return crypto_percentage, fiat_percentage


def split_amounts(
    agreed_price: Decimal,
    crypto_percentage: int,
    fiat_percentage: int,
) -> tuple[Decimal, Decimal]:
    """Split the agreed price into (crypto_eur, fiat_eur)."""
    crypto_eur = agreed_price * Decimal(crypto_percentage) / HUNDRED
    fiat_eur = agreed_price * Decimal(fiat_percentage) / HUNDRED
    return crypto_eur, fiat_eur


def normalize_currency(currency: str | None, supported: list[str]) -> str:
    """Upper-case and allow-list a settlement currency.

    Raises:
        InvalidCurrencyError: If the currency is missing or not supported.
    """
    code = (currency or "").strip().upper()
    if code not in supported:
        raise InvalidCurrencyError(currency or "", supported)
    return code


def convert_to_crypto(eur_amount: Decimal, rate: Decimal | None) -> tuple[Decimal, Decimal, str]:
    """Convert an EUR amount to a crypto quantity at ``rate`` EUR per unit.

    A missing or non-positive rate falls back to 1:1 and is reported as such.

    Returns:
        (crypto_amount, rate_used, rate_source)
    """
    if rate is None or rate <= 0:
        return eur_amount, Decimal(1), RATE_FALLBACK
    return eur_amount / rate, rate, RATE_LIVE


def _crypto_steps(
    crypto_eur: Decimal,
    crypto_amount: Decimal,
    currency: str,
    fiat_currency: str,
    buyer_wallet: WalletRef,
    seller_wallet: WalletRef,
) -> list[dict]:
    qty = f"{display_crypto(crypto_amount)} {currency}"
    eur = f"{display_eur(crypto_eur)} {fiat_currency}"
    return [
        {
            "step_type": StepType.CRYPTO_DEPOSIT,
            "description": f"Deposit {qty} to your platform wallet",
            "user_type": StepUserType.BUYER,
            "amount": crypto_amount,
            "currency": currency,
            "eur_amount": crypto_eur,
            "to_wallet_id": buyer_wallet.provider_wallet_id,
        },
        {
            "step_type": StepType.CRYPTO_TRANSFER,
            "description": f"Transfer {qty} to the seller's platform wallet",
            "user_type": StepUserType.BUYER,
            "amount": crypto_amount,
            "currency": currency,
            "eur_amount": crypto_eur,
            "from_wallet_id": buyer_wallet.provider_wallet_id,
            "to_wallet_id": seller_wallet.provider_wallet_id,
        },
        {
            "step_type": StepType.CRYPTO_CONVERT,
            "description": f"Convert {qty} to {eur}",
            "user_type": StepUserType.SELLER,
            "amount": crypto_amount,
            "currency": currency,
            "eur_amount": crypto_eur,
            "from_wallet_id": seller_wallet.provider_wallet_id,
        },
        {
            "step_type": StepType.IBAN_TRANSFER,
            "description": f"Withdraw {eur} to your bank account",
            "user_type": StepUserType.SELLER,
            "amount": crypto_eur,
            "currency": fiat_currency,
            "eur_amount": crypto_eur,
        },
    ]


def _fiat_steps(fiat_eur: Decimal, fiat_currency: str) -> list[dict]:
    eur = f"{display_eur(fiat_eur)} {fiat_currency}"
    return [
        {
            "step_type": StepType.FIAT_UPLOAD,
            "description": f"Upload proof of the {eur} bank transfer",
            "user_type": StepUserType.BUYER,
            "amount": fiat_eur,
            "currency": fiat_currency,
            "eur_amount": fiat_eur,
        },
        {
            "step_type": StepType.FIAT_CONFIRM,
            "description": f"Confirm receipt of {eur}",
            "user_type": StepUserType.SELLER,
            "amount": fiat_eur,
            "currency": fiat_currency,
            "eur_amount": fiat_eur,
        },
    ]


def plan_fund_protection(
    *,
    agreed_price: Decimal,
    payment_method: PaymentMethod,
    crypto_percentage: int | None,
    fiat_percentage: int | None,
    currency: str | None,
    exchange_rate: Decimal | None,
    buyer_wallet: WalletRef | None = None,
    seller_wallet: WalletRef | None = None,
    fiat_currency: str = "EUR",
) -> FundProtectionPlan:
    """Build the ordered step list for a transaction.

    Crypto steps come first (deposit, transfer, convert, IBAN withdrawal),
    then fiat steps (upload proof, confirm receipt). Step numbers are
    contiguous from 1. A rail whose EUR share is zero emits no steps.

    ``currency`` is ignored for FIAT-only plans, which settle in
    ``fiat_currency``. Wallets are required whenever a crypto rail exists.
    """
    crypto_pct, fiat_pct = resolve_percentages(
        payment_method, crypto_percentage, fiat_percentage
    )
    crypto_eur, fiat_eur = split_amounts(agreed_price, crypto_pct, fiat_pct)

    raw_steps: list[dict] = []
    crypto_amount = Decimal(0)
    rate_used = Decimal(1)
    rate_source = RATE_LIVE
    settlement_currency = fiat_currency

    if crypto_eur > 0:
        if currency is None:
            raise ValueError("A crypto currency is required for a crypto rail")
        if buyer_wallet is None or seller_wallet is None:
            raise ValueError("Both wallets are required for a crypto rail")
        crypto_amount, rate_used, rate_source = convert_to_crypto(crypto_eur, exchange_rate)
        settlement_currency = currency
        raw_steps.extend(
            _crypto_steps(
                crypto_eur, crypto_amount, currency, fiat_currency, buyer_wallet, seller_wallet
            )
        )

    if fiat_eur > 0:
        raw_steps.extend(_fiat_steps(fiat_eur, fiat_currency))

    steps = tuple(
        PlannedStep(step_number=number, **fields)
        for number, fields in enumerate(raw_steps, start=1)
    )

    return FundProtectionPlan(
        payment_method=payment_method,
        currency=settlement_currency,
        crypto_eur_amount=crypto_eur,
        fiat_eur_amount=fiat_eur,
        crypto_amount=crypto_amount,
        exchange_rate=rate_used,
        rate_source=rate_source,
        steps=steps,
    )


def current_step_number(statuses: list[tuple[int, StepStatus]]) -> int | None:
    """Return the lowest-numbered step that is not yet COMPLETED."""
    for number, status in sorted(statuses):
        if status != StepStatus.COMPLETED:
            return number
    return None


def blocking_step(step_number: int, statuses: list[tuple[int, StepStatus]]) -> int | None:
    """Return the first earlier step that is not COMPLETED, if any."""
    for number, status in sorted(statuses):
        if number >= step_number:
            break
        if status != StepStatus.COMPLETED:
            return number
    return None
