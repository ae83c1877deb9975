# slotpop/services/pricing.py
from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Protocol, Sequence

from ..errors import InternalError, ValidationError
from ..schemas import OrderItemInput
from ..utils.logging import get_logger
from .catalog import Catalog

log = get_logger("pricing")

CENT = Decimal("0.01")


def to_cents(v: Decimal) -> Decimal:
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class PriceDetails:
    item_prices: Dict[str, Decimal] = field(default_factory=dict)     # per unit
    item_discounts: Dict[str, Decimal] = field(default_factory=dict)  # per unit
    subtotal: Decimal = Decimal("0.00")
    total_discount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def line_subtotal(self, sku_id: str, qty: int) -> Decimal:
        return (self.item_prices[sku_id] - self.item_discounts[sku_id]) * qty


class PriceCalculator(Protocol):
    def price(self, items: Sequence[OrderItemInput]) -> PriceDetails: ...


class CatalogPricing:
    """Per-SKU list price minus the SKU's discount rule; amounts kept to the cent."""

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def unit_discount(self, sku_id: str, base: Decimal) -> Decimal:
        product = self.catalog.get(sku_id)
        rule = product.discount if product else None
        if rule is None:
            return Decimal("0.00")
        if rule.type == "percent":
            return to_cents(base * rule.value / 100)
        if rule.type == "fixed":
            return min(to_cents(rule.value), base)
        log.error("Unknown discount type %r configured for SKU %s", rule.type, sku_id)
        raise InternalError()

    def price(self, items: Sequence[OrderItemInput]) -> PriceDetails:
        out = PriceDetails()
        for item in items:
            product = self.catalog.get(item.sku_id)
            if product is None or product.price <= 0:
                raise ValidationError(f"No valid price for SKU {item.sku_id}")
            base = to_cents(product.price)
            discount = self.unit_discount(item.sku_id, base)

            out.item_prices[item.sku_id] = base
            out.item_discounts[item.sku_id] = discount
            out.subtotal += base * item.qty
            out.total_discount += discount * item.qty

        out.total = out.subtotal - out.total_discount
        return out
