"""
Pricing Catalog - subscription plans and credit packs.

NO DICTIONARIES - Catalog entries are immutable dataclasses.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from app.exceptions import InvalidArgumentError


@dataclass(frozen=True)
class PlanDefinition:
    """A yearly site subscription plan."""

    name: str
    yearly_price: Decimal
    included_credits: int  # Radium credits per month
    has_game_screenshots: bool
    has_bonus_code_feed: bool

    @property
    def monthly_rate(self) -> Decimal:
        """Yearly price spread over twelve months, rounded to cents."""
        return (self.yearly_price / 12).quantize(Decimal("0.01"))

    @property
    def annual_credits(self) -> int:
        """Radium credits awarded up front for a year."""
        return self.included_credits * 12


@dataclass(frozen=True)
class CreditPack:
    """A one-off credit bundle."""

    name: str
    credits: int
    price: Decimal


PLANS: tuple[PlanDefinition, ...] = (
    PlanDefinition("BASIC", Decimal("300.00"), 10, False, False),
    PlanDefinition("PRO", Decimal("360.00"), 25, True, False),
    PlanDefinition("EVERYTHING", Decimal("420.00"), 50, True, True),
)

CREDIT_PACKS: tuple[CreditPack, ...] = (
    CreditPack("STARTER", 100, Decimal("400.00")),
    CreditPack("STANDARD", 1000, Decimal("3000.00")),
    CreditPack("PREMIUM", 3000, Decimal("7500.00")),
)

# Custom credit amounts may not be priced below this per credit
MIN_CREDIT_PRICE = Decimal("0.02")


def get_plan(name: str) -> PlanDefinition:
    """Look up a plan by name (case-insensitive)."""
    wanted = name.strip().upper()
    for plan in PLANS:
        if plan.name == wanted:
            return plan
    raise InvalidArgumentError(f"Unknown plan: {name}")


def find_credit_pack(credits: int, price: Decimal) -> CreditPack | None:
    """Catalog pack matching a credit amount and price, if any."""
    for pack in CREDIT_PACKS:
        if pack.credits == credits and pack.price == price:
            return pack
    return None


def minimum_credit_price(credits: int) -> Decimal:
    """Lowest USD price accepted for a credit amount, rounded up to cents."""
    return (MIN_CREDIT_PRICE * credits).quantize(Decimal("0.01"), rounding=ROUND_CEILING)


def check_plan_price(plan: PlanDefinition, amount: Decimal) -> None:
    """
    Raises:
        InvalidArgumentError: Amount is not the plan's yearly price
    """
    if amount != plan.yearly_price:
        raise InvalidArgumentError(
            f"{plan.name} plan costs {plan.yearly_price} per year, got {amount}"
        )


def check_credit_price(credits: int, amount: Decimal) -> None:
    """
    Raises:
        InvalidArgumentError: Amount undercuts the per-credit floor
    """
    floor = minimum_credit_price(credits)
    if amount < floor:
        raise InvalidArgumentError(f"{credits} credits cost at least {floor}, got {amount}")
