from dataclasses import dataclass
from typing import Optional

from billing.core.exceptions import ValidationError
from billing.utils.money import Money, ensure_cents


@dataclass(frozen=True)
class LineSnapshot:
    """
    Product identity and price frozen at the moment a line is created.

    Order and invoice lines are built from a snapshot and never look at the
    live product again, so later catalog edits leave history untouched.
    """

    product_id: Optional[int]
    name: str
    sku: Optional[str]
    unit_price_cents: int
    currency: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Line name is required")
        ensure_cents(self.unit_price_cents, "unit_price_cents")
        if self.unit_price_cents < 0:
            raise ValidationError("Unit price cannot be negative")

    @property
    def unit_price(self) -> Money:
        return Money(self.unit_price_cents, self.currency)

    @classmethod
    def from_product(cls, product) -> "LineSnapshot":
        return cls(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            unit_price_cents=product.unit_price_cents,
            currency=product.currency,
        )

    @classmethod
    def manual(
        cls,
        name: str,
        unit_price_cents: int,
        currency: str,
        sku: Optional[str] = None,
    ) -> "LineSnapshot":
        return cls(
            product_id=None,
            name=name.strip() if name else name,
            sku=sku,
            unit_price_cents=unit_price_cents,
            currency=currency,
        )
