"""
SQLAlchemy ORM Models for the FreshCart storefront

Tables:
- profiles: Signed-in users (customers, admins, riders, packers)
- categories, stores, products: Catalog
- delivery_options, delivery_settings: Delivery pricing
- orders, order_items, order_tracking_events: Orders and their lifecycle
- customer_notifications, notifications: Per-user and broadcast messages
- wallets, wallet_transactions: Prepaid wallet
- loyalty_settings, loyalty_transactions, loyalty_redemptions: Loyalty points
- discount_codes: Promo codes
- kyc_verifications, pay_later_orders, bnpl_transactions, bnpl_installments: Credit
- receipts: Issued receipts
"""

from datetime import datetime

import pytz
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Date, ForeignKey,
    Numeric, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ORDER_STATUSES = (
    "pending",
    "processing",
    "dispatched",
    "out_for_delivery",
    "delivered",
    "cancelled",
)

USER_ROLES = ("customer", "admin", "delivery", "packer")

PAYMENT_METHODS = ("wallet", "mpesa", "cod", "pay_later", "bnpl")


def utcnow() -> datetime:
    """Naive UTC timestamp used for every created_at/updated_at column"""
    return datetime.now(pytz.utc).replace(tzinfo=None)


class Profile(Base):
    """A user of the storefront. Identity itself is owned by the auth provider."""
    __tablename__ = 'profiles'

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(20))
    role = Column(String(20), nullable=False, default="customer")
    loyalty_points = Column(Integer, nullable=False, default=0)
    points_last_activity = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    orders = relationship("Order", back_populates="user", foreign_keys="Order.user_id")
    wallet = relationship("Wallet", back_populates="user", uselist=False)

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or "Customer"

    def __repr__(self):
        return f"<Profile {self.email} ({self.role})>"


class Category(Base):
    """Product category"""
    __tablename__ = 'categories'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    image_url = Column(String(500))
    created_at = Column(DateTime, default=utcnow)

    products = relationship("Product", back_populates="category")

    def __repr__(self):
        return f"<Category {self.name}>"


class Store(Base):
    """Partner store or warehouse that supplies products"""
    __tablename__ = 'stores'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    address = Column(String(500))
    city = Column(String(100))
    phone = Column(String(20))
    latitude = Column(Float)
    longitude = Column(Float)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="store")

    def __repr__(self):
        return f"<Store {self.name}>"


class Product(Base):
    """Sellable product with stock on hand"""
    __tablename__ = 'products'
    __table_args__ = (
        Index('idx_products_category', 'category_id'),
        Index('idx_products_featured', 'featured'),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2))
    unit = Column(String(50), default="each")  # e.g. "kg", "500 g", "1 l", "each"
    stock = Column(Integer, nullable=False, default=0)
    image_url = Column(String(500))
    featured = Column(Boolean, default=False)
    tags = Column(JSON, default=list)
    category_id = Column(Integer, ForeignKey('categories.id'))
    store_id = Column(Integer, ForeignKey('stores.id'))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="products")
    store = relationship("Store", back_populates="products")

    @property
    def effective_price(self):
        """Price a customer pays: the discount price when one is set"""
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price

    def __repr__(self):
        return f"<Product {self.name}: {self.price}>"


class DeliveryOption(Base):
    """Delivery tier offered at checkout"""
    __tablename__ = 'delivery_options'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    base_price = Column(Numeric(12, 2), nullable=False)
    price_per_km = Column(Numeric(12, 2))
    estimated_delivery_days = Column(Integer, nullable=False, default=2)
    is_express = Column(Boolean, default=False)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<DeliveryOption {self.name}>"


class DeliverySettings(Base):
    """Single-row table with warehouse location and free delivery threshold"""
    __tablename__ = 'delivery_settings'

    id = Column(Integer, primary_key=True)
    free_delivery_threshold = Column(Numeric(12, 2), nullable=False)
    warehouse_lat = Column(Float, nullable=False)
    warehouse_lng = Column(Float, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    """Customer order moving through pending → delivered (or cancelled)"""
    __tablename__ = 'orders'
    __table_args__ = (
        Index('idx_orders_user', 'user_id'),
        Index('idx_orders_status', 'status'),
        Index('idx_orders_assigned_to', 'assigned_to'),
        Index('idx_orders_payment_reference', 'payment_reference'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    status = Column(String(30), nullable=False, default="pending")
    delivery_address = Column(JSON, nullable=False)  # street, city, postal_code, lat, lng, notes
    delivery_method = Column(String(100))
    payment_method = Column(String(30), nullable=False)
    payment_status = Column(String(20), nullable=False, default="unpaid")
    payment_reference = Column(String(100))
    subtotal = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text)
    estimated_delivery = Column(String(50))

    # Fulfilment
    barcode = Column(String(40))
    packer_id = Column(Integer, ForeignKey('profiles.id'))
    assigned_to = Column(Integer, ForeignKey('profiles.id'))
    packing_started_at = Column(DateTime)
    packing_completed_at = Column(DateTime)
    packing_verified_by_barcode = Column(Boolean, default=False)
    delivery_verified_by_barcode = Column(Boolean, default=False)
    delivered_at = Column(DateTime)
    signature = Column(Text)
    stock_deducted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("Profile", back_populates="orders", foreign_keys=[user_id])
    rider = relationship("Profile", foreign_keys=[assigned_to])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    tracking_events = relationship(
        "OrderTrackingEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderTrackingEvent.id",
    )

    def __repr__(self):
        return f"<Order {self.id} {self.status}: {self.total}>"


class OrderItem(Base):
    """Line item snapshot taken at checkout"""
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def line_total(self):
        return self.price * self.quantity


class OrderTrackingEvent(Base):
    """One entry in an order's tracking timeline"""
    __tablename__ = 'order_tracking_events'
    __table_args__ = (
        Index('idx_tracking_order', 'order_id'),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    status = Column(String(30), nullable=False)
    description = Column(String(500), nullable=False)
    location = Column(String(255))
    created_by = Column(Integer, ForeignKey('profiles.id'))
    timestamp = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="tracking_events")


class CustomerNotification(Base):
    """Message shown in a customer's notification menu"""
    __tablename__ = 'customer_notifications'
    __table_args__ = (
        Index('idx_customer_notifications_user', 'user_id'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    order_id = Column(Integer, ForeignKey('orders.id'))
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, default="order_status")
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class Notification(Base):
    """Broadcast notification composed in the admin back-office"""
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    audience = Column(String(50), default="all")
    status = Column(String(20), nullable=False, default="draft")  # draft, scheduled, sent
    scheduled_for = Column(DateTime)
    sent_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class Wallet(Base):
    """Prepaid balance; one per user"""
    __tablename__ = 'wallets'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("Profile", back_populates="wallet")
    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        cascade="all, delete-orphan",
    )


class WalletTransaction(Base):
    """Signed movement on a wallet (deposits positive, payments negative)"""
    __tablename__ = 'wallet_transactions'
    __table_args__ = (
        Index('idx_wallet_transactions_wallet', 'wallet_id'),
    )

    id = Column(Integer, primary_key=True)
    wallet_id = Column(Integer, ForeignKey('wallets.id'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_type = Column(String(30), nullable=False)  # deposit, payment, refund, loyalty_redemption
    description = Column(String(500))
    created_at = Column(DateTime, default=utcnow)

    wallet = relationship("Wallet", back_populates="transactions")


class LoyaltySettings(Base):
    """Single-row table controlling points earning and redemption"""
    __tablename__ = 'loyalty_settings'

    id = Column(Integer, primary_key=True)
    points_per_ksh = Column(Float, nullable=False, default=1.0)
    ksh_per_point = Column(Float, nullable=False, default=1.0)
    min_redemption_points = Column(Integer, nullable=False, default=100)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class LoyaltyTransaction(Base):
    """Points ledger entry"""
    __tablename__ = 'loyalty_transactions'
    __table_args__ = (
        Index('idx_loyalty_transactions_user', 'user_id'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    points = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)  # earned, redeemed, expired, adjusted
    source = Column(String(50), nullable=False)
    description = Column(String(500))
    order_id = Column(Integer, ForeignKey('orders.id'))
    created_at = Column(DateTime, default=utcnow)


class LoyaltyRedemption(Base):
    """Points converted to wallet credit"""
    __tablename__ = 'loyalty_redemptions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    points_redeemed = Column(Integer, nullable=False)
    ksh_value = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(DateTime, default=utcnow)


class DiscountCode(Base):
    """Promo code applied at checkout"""
    __tablename__ = 'discount_codes'

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    type = Column(String(20), nullable=False)  # percentage, fixed
    value = Column(Numeric(12, 2), nullable=False)
    min_purchase = Column(Numeric(12, 2))
    max_discount = Column(Numeric(12, 2))
    usage_limit = Column(Integer)
    usage_count = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    description = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class KYCVerification(Base):
    """Identity verification that unlocks pay-later credit"""
    __tablename__ = 'kyc_verifications'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), unique=True, nullable=False)
    id_document_url = Column(String(500))
    address_proof_url = Column(String(500))
    status = Column(String(20), nullable=False, default="pending")  # pending, approved, rejected
    admin_notes = Column(Text)
    credit_limit = Column(Numeric(12, 2), nullable=False, default=0)
    credit_used = Column(Numeric(12, 2), nullable=False, default=0)
    credit_score = Column(Integer)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("Profile")


class PayLaterOrder(Base):
    """Order paid in full by a due date"""
    __tablename__ = 'pay_later_orders'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_date = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, completed, overdue, cancelled
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class BNPLTransaction(Base):
    """Order split into weekly installments"""
    __tablename__ = 'bnpl_transactions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    order_id = Column(Integer, ForeignKey('orders.id'))
    principal_amount = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    interest_rate = Column(Numeric(5, 2), nullable=False, default=0)
    installments = Column(Integer, nullable=False)
    installment_amount = Column(Numeric(12, 2), nullable=False)
    next_payment_date = Column(Date)
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, completed, overdue, cancelled
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    installment_rows = relationship(
        "BNPLInstallment",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="BNPLInstallment.installment_number",
    )


class BNPLInstallment(Base):
    """One scheduled installment of a BNPL transaction"""
    __tablename__ = 'bnpl_installments'
    __table_args__ = (
        UniqueConstraint('transaction_id', 'installment_number', name='unique_installment_number'),
    )

    id = Column(Integer, primary_key=True)
    transaction_id = Column(Integer, ForeignKey('bnpl_transactions.id'), nullable=False)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    paid_at = Column(DateTime)
    payment_method = Column(String(30))
    status = Column(String(20), nullable=False, default="pending")  # pending, paid, overdue, waived, cancelled
    created_at = Column(DateTime, default=utcnow)

    transaction = relationship("BNPLTransaction", back_populates="installment_rows")


class Receipt(Base):
    """Receipt issued for an order"""
    __tablename__ = 'receipts'

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('profiles.id'), nullable=False)
    receipt_number = Column(String(50), unique=True, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    email_sent_to = Column(String(255))
    sent_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


if __name__ == "__main__":
    print("SQLAlchemy ORM Models:")
    for table in Base.metadata.sorted_tables:
        print(f"- {table.name}")
