"""
Stock validation, deduction and restoration

Items are anything with `product_id` and `quantity` (cart lines, order items).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from sqlalchemy.orm import Session

from errors import InsufficientStockError
from models import Product

logger = logging.getLogger(__name__)


@dataclass
class InsufficientItem:
    product_id: int
    available: int
    requested: int


@dataclass
class StockValidationResult:
    is_valid: bool
    insufficient_items: List[InsufficientItem] = field(default_factory=list)


class InventoryService:
    """Keeps product stock in step with orders"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def validate_stock(self, items: Iterable) -> StockValidationResult:
        """
        Check every item against current stock.

        Quantities for the same product are summed first. A product that no
        longer exists counts as having no stock.
        """
        requested = {}
        for item in items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        insufficient = []
        for product_id, quantity in requested.items():
            product = self.session.get(Product, product_id)
            available = product.stock if product is not None else 0

            if available < quantity:
                insufficient.append(InsufficientItem(
                    product_id=product_id,
                    available=available,
                    requested=quantity,
                ))

        if insufficient:
            logger.warning(f"Stock check failed for products: {[i.product_id for i in insufficient]}")

        return StockValidationResult(
            is_valid=not insufficient,
            insufficient_items=insufficient,
        )

    def deduct_stock(self, items: Iterable) -> None:
        """
        Deduct stock for all items, or none.

        Raises:
            InsufficientStockError: If any product lacks stock
        """
        items = list(items)
        validation = self.validate_stock(items)
        if not validation.is_valid:
            raise InsufficientStockError(validation.insufficient_items)

        for item in items:
            product = self.session.get(Product, item.product_id)
            product.stock -= item.quantity

        self.session.flush()
        logger.info(f"✓ Deducted stock for {len(items)} items")

    def restore_stock(self, items: Iterable) -> None:
        """Put quantities back on the shelf (products that were deleted are skipped)"""
        restored = 0
        for item in items:
            product = self.session.get(Product, item.product_id)
            if product is None:
                logger.warning(f"Cannot restore stock for missing product {item.product_id}")
                continue
            product.stock += item.quantity
            restored += 1

        self.session.flush()
        logger.info(f"✓ Restored stock for {restored} items")
