"""
Shopping cart kept in the Streamlit session

Lines hold a snapshot of the product's effective price at the time it was
added; stock is checked again at checkout.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from currency import quantize_money, to_decimal


@dataclass
class CartItem:
    product_id: int
    name: str
    price: Decimal
    quantity: int
    unit: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.price * self.quantity)


@dataclass
class Cart:
    items: List[CartItem] = field(default_factory=list)

    def _find(self, product_id: int) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def add_item(self, product, quantity: int = 1) -> CartItem:
        """Add a product; adding one already in the cart increases its quantity"""
        if quantity <= 0:
            raise ValueError("Quantity must be positive")

        existing = self._find(product.id)
        if existing:
            existing.quantity += quantity
            return existing

        item = CartItem(
            product_id=product.id,
            name=product.name,
            price=to_decimal(product.effective_price),
            quantity=quantity,
            unit=product.unit,
            image_url=product.image_url,
        )
        self.items.append(item)
        return item

    def remove_item(self, product_id: int) -> None:
        self.items = [item for item in self.items if item.product_id != product_id]

    def update_quantity(self, product_id: int, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line"""
        if quantity <= 0:
            self.remove_item(product_id)
            return

        item = self._find(product_id)
        if item:
            item.quantity = quantity

    def clear(self) -> None:
        self.items = []

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        return quantize_money(sum((item.price * item.quantity for item in self.items), Decimal("0")))

    def is_empty(self) -> bool:
        return not self.items
