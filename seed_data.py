"""
Default data for local runs and tests

Seeds a small Nairobi catalog, delivery options, settings, a discount code and
one profile per role. Seeding is skipped when products already exist.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict

from sqlalchemy.orm import Session

from config import StorefrontConfig
from models import (
    Category, DeliveryOption, DeliverySettings, DiscountCode, KYCVerification,
    LoyaltySettings, Product, Profile, Store, utcnow
)

logger = logging.getLogger(__name__)

PROFILES = [
    {"email": "admin@freshcart.co.ke", "first_name": "Grace", "last_name": "Muthoni", "role": "admin", "phone": "0700000001"},
    {"email": "jane@example.com", "first_name": "Jane", "last_name": "Wanjiku", "role": "customer", "phone": "0712345678"},
    {"email": "brian@example.com", "first_name": "Brian", "last_name": "Otieno", "role": "customer", "phone": "0723456789"},
    {"email": "packer@freshcart.co.ke", "first_name": "Peter", "last_name": "Njoroge", "role": "packer", "phone": "0700000002"},
    {"email": "kamau@freshcart.co.ke", "first_name": "David", "last_name": "Kamau", "role": "delivery", "phone": "0700000003"},
    {"email": "achieng@freshcart.co.ke", "first_name": "Mary", "last_name": "Achieng", "role": "delivery", "phone": "0700000004"},
]

CATEGORIES = {
    "Fruits & Vegetables": "Fresh produce from local farms",
    "Dairy & Eggs": "Milk, yoghurt, cheese and eggs",
    "Bakery": "Bread and baked goods",
    "Pantry": "Flour, rice, oil and other staples",
}

# (name, category, price, discount_price, unit, stock, featured)
PRODUCTS = [
    ("Tomatoes", "Fruits & Vegetables", "120.00", None, "1 kg", 50, True),
    ("Sukuma Wiki", "Fruits & Vegetables", "30.00", None, "each", 100, False),
    ("Bananas", "Fruits & Vegetables", "150.00", None, "dozen", 40, True),
    ("Fresh Milk", "Dairy & Eggs", "65.00", "60.00", "500 ml", 60, True),
    ("Eggs (Tray of 30)", "Dairy & Eggs", "450.00", None, "each", 20, False),
    ("White Bread", "Bakery", "65.00", None, "400 g", 30, False),
    ("Maize Flour", "Pantry", "210.00", None, "2 kg", 80, True),
    ("Pishori Rice", "Pantry", "380.00", None, "1 kg", 5, False),
    ("Cooking Oil", "Pantry", "320.00", None, "1 l", 25, False),
]

DELIVERY_OPTIONS = [
    {"name": "Standard Delivery", "description": "Delivered within 2 days", "base_price": "150.00",
     "price_per_km": "20.00", "estimated_delivery_days": 2, "is_express": False},
    {"name": "Next Day Delivery", "description": "Delivered tomorrow", "base_price": "200.00",
     "price_per_km": "25.00", "estimated_delivery_days": 1, "is_express": False},
    {"name": "Express Delivery", "description": "Delivered within hours", "base_price": "300.00",
     "price_per_km": "30.00", "estimated_delivery_days": 0, "is_express": True},
]

FREE_DELIVERY_THRESHOLD = Decimal("3000.00")


class SeedDataManager:
    """Populates an empty database with demo data"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def seed_default_data(self) -> Dict[str, int]:
        """
        Insert the default data set.

        Returns:
            Row counts per table; empty when the database was already seeded
        """
        if self.session.query(Product).count() > 0:
            logger.info("Database already seeded, skipping")
            return {}

        counts = {
            "profiles": self._seed_profiles(),
            "products": self._seed_catalog(),
            "delivery_options": self._seed_delivery(),
        }
        self._seed_loyalty_and_promotions()
        self._seed_credit()

        self.session.flush()
        logger.info(f"✓ Seeded default data: {counts}")
        return counts

    def _seed_profiles(self) -> int:
        for data in PROFILES:
            self.session.add(Profile(**data))
        self.session.flush()
        return len(PROFILES)

    def _seed_catalog(self) -> int:
        categories = {}
        for name, description in CATEGORIES.items():
            categories[name] = Category(name=name, description=description)
            self.session.add(categories[name])

        store = Store(
            name="FreshCart Westlands",
            address="Waiyaki Way",
            city="Nairobi",
            phone="0700000000",
            latitude=StorefrontConfig.WAREHOUSE_LAT,
            longitude=StorefrontConfig.WAREHOUSE_LNG,
        )
        self.session.add(store)

        for name, category, price, discount_price, unit, stock, featured in PRODUCTS:
            self.session.add(Product(
                name=name,
                price=Decimal(price),
                discount_price=Decimal(discount_price) if discount_price else None,
                unit=unit,
                stock=stock,
                featured=featured,
                tags=[],
                category=categories[category],
                store=store,
            ))

        self.session.flush()
        return len(PRODUCTS)

    def _seed_delivery(self) -> int:
        for data in DELIVERY_OPTIONS:
            self.session.add(DeliveryOption(
                name=data["name"],
                description=data["description"],
                base_price=Decimal(data["base_price"]),
                price_per_km=Decimal(data["price_per_km"]),
                estimated_delivery_days=data["estimated_delivery_days"],
                is_express=data["is_express"],
                active=True,
            ))

        self.session.add(DeliverySettings(
            free_delivery_threshold=FREE_DELIVERY_THRESHOLD,
            warehouse_lat=StorefrontConfig.WAREHOUSE_LAT,
            warehouse_lng=StorefrontConfig.WAREHOUSE_LNG,
        ))
        self.session.flush()
        return len(DELIVERY_OPTIONS)

    def _seed_loyalty_and_promotions(self) -> None:
        self.session.add(LoyaltySettings(
            points_per_ksh=0.1,
            ksh_per_point=1.0,
            min_redemption_points=100,
        ))

        now = utcnow()
        self.session.add(DiscountCode(
            code="WELCOME10",
            type="percentage",
            value=Decimal("10.00"),
            min_purchase=Decimal("500.00"),
            max_discount=Decimal("300.00"),
            usage_limit=100,
            usage_count=0,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=365),
            active=True,
            description="10% off your first order",
        ))

    def _seed_credit(self) -> None:
        """Jane has approved KYC with a KSh 10,000 limit; Brian has none"""
        jane = self.session.query(Profile).filter(Profile.email == "jane@example.com").one()
        self.session.add(KYCVerification(
            user_id=jane.id,
            id_document_url="kyc/jane/id.jpg",
            address_proof_url="kyc/jane/address.pdf",
            status="approved",
            credit_limit=Decimal("10000.00"),
            credit_used=Decimal("0.00"),
            credit_score=720,
        ))


if __name__ == "__main__":
    from database import get_db_manager

    db = get_db_manager()
    db.init_db()
    with db.session_scope() as session:
        print(SeedDataManager(session).seed_default_data())
