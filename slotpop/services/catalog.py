# slotpop/services/catalog.py
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional


@dataclass
class DiscountRule:
    type: str          # percent|fixed
    value: Decimal


@dataclass
class Product:
    sku_id: str
    price: Decimal
    available: int
    active: bool = True
    discount: Optional[DiscountRule] = None


class Catalog:
    """SKU -> product lookup shared by the inventory and pricing collaborators."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.sku_id: p for p in products}

    def get(self, sku_id: str) -> Optional[Product]:
        return self._products.get(sku_id)

    def add(self, product: Product) -> None:
        self._products[product.sku_id] = product


def default_catalog() -> Catalog:
    return Catalog([
        Product("SKU001", Decimal("10.99"), 100, discount=DiscountRule("percent", Decimal("10"))),
        Product("SKU002", Decimal("15.50"), 50, discount=DiscountRule("fixed", Decimal("2.00"))),
        Product("SKU003", Decimal("5.99"), 20),
        Product("SKU004", Decimal("20.00"), 10),
        Product("SKU005", Decimal("7.49"), 5, active=False),
    ])
