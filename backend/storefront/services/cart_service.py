"""
Cart Store

Product + variant → quantity mapping for one shopper session. Every
mutation writes the full cart snapshot back to the state store so the cart
survives reloads and server restarts. No network calls happen here.
"""

import logging
import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.services.state_store import StateStore, StorageKey

logger = logging.getLogger(__name__)

DEFAULT_VARIANT = "default"


@dataclass
class CartLine:
    """One line of the cart, unique per (id, variant)."""
    id: str
    title: str
    price: Decimal
    quantity: int
    image: Optional[str] = None
    variant: Optional[str] = None

    @property
    def key(self) -> tuple:
        return line_key(self.id, self.variant)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartLine":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            price=Decimal(str(data.get("price", "0"))),
            quantity=int(data.get("quantity", 0)),
            image=data.get("image"),
            variant=data.get("variant"),
        )


def line_key(product_id: str, variant: Optional[str]) -> tuple:
    return (str(product_id), variant or DEFAULT_VARIANT)


def clamp_quantity(quantity) -> int:
    """Quantities are whole and never negative."""
    return max(0, math.floor(quantity))


class CartService:
    """Cart operations for one session."""

    def __init__(self, store: StateStore):
        self.store = store
        self._lines: List[CartLine] = [
            CartLine.from_dict(raw) for raw in store.get(StorageKey.CART, []) or []
        ]

    def _persist(self) -> None:
        self.store.set(StorageKey.CART, [line.to_dict() for line in self._lines])

    def _find(self, product_id: str, variant: Optional[str]) -> Optional[CartLine]:
        key = line_key(product_id, variant)
        for line in self._lines:
            if line.key == key:
                return line
        return None

    def items(self) -> List[CartLine]:
        return list(self._lines)

    def is_empty(self) -> bool:
        return not self._lines

    def add_or_update_quantity(
        self,
        product_id: str,
        variant: Optional[str],
        quantity: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[CartLine]:
        """Add ``quantity`` units of a product variant.

        An existing (id, variant) line has the quantity added to it, so a
        negative value decrements. A new line needs ``metadata`` with at
        least ``title`` and ``price``. Returns the resulting line, or None
        when the line ended at zero and was removed.
        """
        line = self._find(product_id, variant)
        if line is None:
            new_quantity = clamp_quantity(quantity)
            if new_quantity == 0:
                return None
            metadata = metadata or {}
            if "price" not in metadata:
                raise ValueError(f"Product {product_id} is not in the cart; title and price are required")
            line = CartLine(
                id=str(product_id),
                title=metadata.get("title", ""),
                price=Decimal(str(metadata["price"])),
                quantity=new_quantity,
                image=metadata.get("image"),
                variant=variant,
            )
            self._lines.append(line)
            self._persist()
            logger.debug(f"Cart line added: {line.key} x{new_quantity}")
            return line

        return self.set_quantity(product_id, variant, line.quantity + quantity)

    def set_quantity(self, product_id: str, variant: Optional[str], quantity: int) -> Optional[CartLine]:
        """Set the absolute quantity of an existing line. Zero removes it."""
        line = self._find(product_id, variant)
        if line is None:
            raise ValueError(f"Product {product_id} ({variant or DEFAULT_VARIANT}) is not in the cart")

        new_quantity = clamp_quantity(quantity)
        if new_quantity == 0:
            self._lines.remove(line)
            self._persist()
            return None

        line.quantity = new_quantity
        self._persist()
        return line

    def remove(self, product_id: str, variant: Optional[str] = None) -> bool:
        line = self._find(product_id, variant)
        if line is None:
            return False
        self._lines.remove(line)
        self._persist()
        return True

    def empty(self) -> None:
        self._lines = []
        self._persist()

    def get_item_quantity(self, product_id: str, variant: Optional[str] = None) -> int:
        line = self._find(product_id, variant)
        return line.quantity if line else 0

    def get_total_items(self) -> int:
        return sum(line.quantity for line in self._lines)

    def get_total_price(self) -> Decimal:
        """Σ price × quantity. Not rounded."""
        return sum((line.line_total for line in self._lines), Decimal("0"))

    def snapshot(self) -> List[Dict[str, Any]]:
        return [line.to_dict() for line in self._lines]
