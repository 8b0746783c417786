"""
Catalog: products, categories and stores
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from currency import to_decimal
from errors import NotFoundError, StorefrontError
from models import Category, Product, Store

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10

PRODUCT_FIELDS = (
    "name", "description", "price", "discount_price", "unit", "stock",
    "image_url", "featured", "tags", "category_id", "store_id",
)
STORE_FIELDS = ("name", "address", "city", "phone", "latitude", "longitude", "active")
MONEY_FIELDS = ("price", "discount_price")


class CatalogService:
    """Product, category and store operations"""

    def __init__(self, db_session: Session):
        self.session = db_session

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def list_products(
        self,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        store_id: Optional[int] = None,
        in_stock_only: bool = False
    ) -> List[Product]:
        """
        Products matching the filters, ordered by name.

        Args:
            search: Case-insensitive text matched against name and description
            category_id: Only products in this category
            store_id: Only products supplied by this store
            in_stock_only: Hide products with no stock
        """
        query = self.session.query(Product)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(Product.name.ilike(pattern), Product.description.ilike(pattern))
            )
        if category_id is not None:
            query = query.filter(Product.category_id == category_id)
        if store_id is not None:
            query = query.filter(Product.store_id == store_id)
        if in_stock_only:
            query = query.filter(Product.stock > 0)

        return query.order_by(Product.name).all()

    def get_featured_products(self, limit: int = 8) -> List[Product]:
        return self.session.query(Product).filter(
            Product.featured == True,
            Product.stock > 0
        ).order_by(Product.name).limit(limit).all()

    def get_product(self, product_id: int) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def create_product(self, name: str, price, stock: int = 0, **fields) -> Product:
        unknown = set(fields) - set(PRODUCT_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown product fields: {sorted(unknown)}")

        product = Product(name=name, price=to_decimal(price), stock=stock)
        self._apply_product_fields(product, fields)

        self.session.add(product)
        self.session.flush()
        logger.info(f"✓ Created product '{name}' (id={product.id})")
        return product

    def update_product(self, product_id: int, **changes) -> Product:
        product = self.get_product(product_id)

        unknown = set(changes) - set(PRODUCT_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown product fields: {sorted(unknown)}")

        self._apply_product_fields(product, changes)
        self.session.flush()
        logger.info(f"✓ Updated product {product_id}: {sorted(changes)}")
        return product

    def delete_product(self, product_id: int) -> None:
        product = self.get_product(product_id)
        self.session.delete(product)
        self.session.flush()
        logger.info(f"✓ Deleted product {product_id}")

    def get_low_stock_products(self, threshold: int = LOW_STOCK_THRESHOLD) -> List[Product]:
        return self.session.query(Product).filter(
            Product.stock <= threshold
        ).order_by(Product.stock, Product.name).all()

    @staticmethod
    def _apply_product_fields(product: Product, fields: Dict) -> None:
        for field_name, value in fields.items():
            if field_name in MONEY_FIELDS and value is not None:
                value = to_decimal(value)
            if field_name == "stock" and value is not None and value < 0:
                raise StorefrontError("Stock cannot be negative")
            setattr(product, field_name, value)

        if product.price is not None and product.price < 0:
            raise StorefrontError("Price cannot be negative")

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def list_categories(self) -> List[Category]:
        return self.session.query(Category).order_by(Category.name).all()

    def get_categories_with_counts(self) -> List[Dict]:
        """Categories with the number of products in each"""
        rows = self.session.query(
            Category, func.count(Product.id)
        ).outerjoin(
            Product, Product.category_id == Category.id
        ).group_by(Category.id).order_by(Category.name).all()

        return [
            {"id": category.id, "name": category.name, "product_count": count}
            for category, count in rows
        ]

    def create_category(self, name: str, description: Optional[str] = None,
                        image_url: Optional[str] = None) -> Category:
        existing = self.session.query(Category).filter(Category.name == name).first()
        if existing:
            raise StorefrontError(f"Category '{name}' already exists")

        category = Category(name=name, description=description, image_url=image_url)
        self.session.add(category)
        self.session.flush()
        logger.info(f"✓ Created category '{name}'")
        return category

    def update_category(self, category_id: int, **changes) -> Category:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")

        for field_name in ("name", "description", "image_url"):
            if field_name in changes:
                setattr(category, field_name, changes[field_name])

        self.session.flush()
        return category

    def delete_category(self, category_id: int) -> None:
        category = self.session.get(Category, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found")

        # Products keep existing without a category
        for product in category.products:
            product.category_id = None

        self.session.delete(category)
        self.session.flush()
        logger.info(f"✓ Deleted category {category_id}")

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def list_stores(self, active_only: bool = False) -> List[Store]:
        query = self.session.query(Store)
        if active_only:
            query = query.filter(Store.active == True)
        return query.order_by(Store.name).all()

    def create_store(self, name: str, **fields) -> Store:
        unknown = set(fields) - set(STORE_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown store fields: {sorted(unknown)}")

        store = Store(name=name, **fields)
        self.session.add(store)
        self.session.flush()
        logger.info(f"✓ Created store '{name}'")
        return store

    def update_store(self, store_id: int, **changes) -> Store:
        store = self.session.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")

        unknown = set(changes) - set(STORE_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown store fields: {sorted(unknown)}")

        for field_name, value in changes.items():
            setattr(store, field_name, value)

        self.session.flush()
        return store

    def delete_store(self, store_id: int) -> None:
        store = self.session.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")

        for product in store.products:
            product.store_id = None

        self.session.delete(store)
        self.session.flush()
        logger.info(f"✓ Deleted store {store_id}")
