# slotpop/services/inventory.py
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence

from ..schemas import OrderItemInput
from .catalog import Catalog


@dataclass
class InventoryCheck:
    valid: bool
    errors: List[str] = field(default_factory=list)
    available: Dict[str, int] = field(default_factory=dict)


class InventoryChecker(Protocol):
    def check(self, items: Sequence[OrderItemInput]) -> InventoryCheck: ...


class CatalogInventory:
    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def check(self, items: Sequence[OrderItemInput]) -> InventoryCheck:
        # repeated SKUs draw on the same stock
        wanted: Dict[str, int] = OrderedDict()
        for item in items:
            wanted[item.sku_id] = wanted.get(item.sku_id, 0) + item.qty

        errors: List[str] = []
        available: Dict[str, int] = {}
        for sku_id, qty in wanted.items():
            product = self.catalog.get(sku_id)
            if product is None:
                errors.append(f"Item with SKU {sku_id} not found in inventory")
                continue
            if not product.active:
                errors.append(f"Item with SKU {sku_id} is not available for purchase")
                continue
            if product.available < qty:
                errors.append(
                    f"Insufficient quantity available for SKU {sku_id}. "
                    f"Requested: {qty}, Available: {product.available}"
                )
                continue
            available[sku_id] = product.available

        return InventoryCheck(valid=not errors, errors=errors, available=available)
