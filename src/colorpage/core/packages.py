"""Credit package catalog.

Packages are fixed at deploy time and looked up by id during checkout.
Prices are in the smallest currency unit (cents).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price: int
    price_display: str
    description: str
    savings: int | None = None
    popular: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["price_per_credit"] = price_per_credit(self.price, self.credits)
        return data


CREDIT_PACKAGES: tuple[CreditPackage, ...] = (
    CreditPackage(
        id="starter",
        name="Starter Pack",
        credits=10,
        price=900,
        price_display="$9",
        description="Perfect for trying out",
    ),
    CreditPackage(
        id="value",
        name="Value Pack",
        credits=25,
        price=2000,
        price_display="$20",
        description="Most popular choice",
        savings=11,
        popular=True,
    ),
    CreditPackage(
        id="pro",
        name="Pro Pack",
        credits=50,
        price=3500,
        price_display="$35",
        description="Best value for money",
        savings=22,
    ),
    CreditPackage(
        id="mega",
        name="Mega Pack",
        credits=100,
        price=6000,
        price_display="$60",
        description="For power users",
        savings=33,
    ),
)

DEFAULT_PACKAGE_ID = "starter"


def get_package_by_id(package_id: str) -> CreditPackage | None:
    return next((pkg for pkg in CREDIT_PACKAGES if pkg.id == package_id), None)


def price_per_credit(price: int, credits: int) -> str:
    """Format the per-credit price in currency units, e.g. ``"0.90"``."""
    return f"{price / credits / 100:.2f}"
