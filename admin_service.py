"""
Admin dashboard statistics and role management

Revenue counts every order that was not cancelled. Periods are calendar
days and months in the store timezone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pandas as pd
import pytz
from sqlalchemy.orm import Session

from config import StorefrontConfig
from currency import quantize_money
from errors import NotFoundError, PermissionDeniedError, StorefrontError
from models import Category, Order, OrderItem, Product, Profile, USER_ROLES

logger = logging.getLogger(__name__)

MONTHS_OF_REVENUE = 6


@dataclass
class DashboardStats:
    today_orders: int = 0
    today_revenue: Decimal = Decimal("0.00")
    month_orders: int = 0
    month_revenue: Decimal = Decimal("0.00")
    last_month_orders: int = 0
    last_month_revenue: Decimal = Decimal("0.00")
    pending_orders: int = 0
    total_customers: int = 0
    monthly_revenue: List[Dict] = field(default_factory=list)  # [{"month": "2026-05", "revenue": ...}]
    category_share: List[Dict] = field(default_factory=list)   # [{"category": ..., "revenue": ..., "share": ...}]
    low_stock: List[Dict] = field(default_factory=list)

    @property
    def revenue_growth(self) -> Optional[float]:
        """Percent change of this month's revenue against last month's"""
        if not self.last_month_revenue:
            return None
        change = (self.month_revenue - self.last_month_revenue) / self.last_month_revenue * 100
        return round(float(change), 1)


def _local_now() -> datetime:
    """Naive local time in the store timezone"""
    return datetime.now(pytz.timezone(StorefrontConfig.STORE_TIMEZONE)).replace(tzinfo=None)


def orders_dataframe(orders: List[Order]) -> pd.DataFrame:
    """One row per order: id, status, total, created_at (store local time)"""
    tz = pytz.timezone(StorefrontConfig.STORE_TIMEZONE)
    frame = pd.DataFrame(
        [
            {
                "id": order.id,
                "status": order.status,
                "total": float(order.total),
                "created_at": pytz.utc.localize(order.created_at).astimezone(tz).replace(tzinfo=None),
            }
            for order in orders
        ],
        columns=["id", "status", "total", "created_at"],
    )
    frame["created_at"] = pd.to_datetime(frame["created_at"])
    return frame


def _revenue(frame: pd.DataFrame) -> Decimal:
    return quantize_money(round(float(frame["total"].sum()), 2))


def calculate_period_stats(frame: pd.DataFrame, now: datetime) -> Dict:
    """Order counts and revenue for today, this month and last month"""
    live = frame[frame["status"] != "cancelled"]
    created = live["created_at"]

    today = live[created.dt.date == now.date()]
    month = live[(created.dt.year == now.year) & (created.dt.month == now.month)]

    last_period = pd.Period(now, freq="M") - 1
    last_month = live[created.dt.to_period("M") == last_period]

    return {
        "today_orders": len(today),
        "today_revenue": _revenue(today),
        "month_orders": len(month),
        "month_revenue": _revenue(month),
        "last_month_orders": len(last_month),
        "last_month_revenue": _revenue(last_month),
    }


def calculate_monthly_revenue(frame: pd.DataFrame, now: datetime,
                              months: int = MONTHS_OF_REVENUE) -> List[Dict]:
    """Revenue per month for the last `months` months, oldest first, zero-filled"""
    periods = pd.period_range(end=pd.Period(now, freq="M"), periods=months, freq="M")

    live = frame[frame["status"] != "cancelled"]
    totals = live.groupby(live["created_at"].dt.to_period("M"))["total"].sum()
    totals = totals.reindex(periods, fill_value=0.0)

    return [
        {"month": str(period), "revenue": quantize_money(round(float(value), 2))}
        for period, value in totals.items()
    ]


class AdminService:
    """Dashboard numbers and user roles for the admin pages"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        """
        Args:
            now: Store-local time to compute periods from (defaults to now)
        """
        from catalog_service import CatalogService

        now = now or _local_now()
        frame = orders_dataframe(self.session.query(Order).all())

        stats = DashboardStats(**calculate_period_stats(frame, now))
        stats.pending_orders = int((frame["status"] == "pending").sum())
        stats.total_customers = self.session.query(Profile).filter(
            Profile.role == "customer"
        ).count()
        stats.monthly_revenue = calculate_monthly_revenue(frame, now)
        stats.category_share = self.get_category_share()
        stats.low_stock = [
            {"id": p.id, "name": p.name, "stock": p.stock}
            for p in CatalogService(self.session).get_low_stock_products()
        ]

        logger.info(
            f"Dashboard: {stats.today_orders} orders today, "
            f"{stats.month_revenue} revenue this month, {stats.pending_orders} pending"
        )
        return stats

    def get_category_share(self) -> List[Dict]:
        """Revenue per category across non-cancelled orders, largest first"""
        rows = self.session.query(
            OrderItem.price, OrderItem.quantity, Category.name
        ).join(Order, OrderItem.order_id == Order.id).outerjoin(
            Product, OrderItem.product_id == Product.id
        ).outerjoin(
            Category, Product.category_id == Category.id
        ).filter(Order.status != "cancelled").all()

        if not rows:
            return []

        frame = pd.DataFrame(
            [(float(price) * quantity, name or "Uncategorized") for price, quantity, name in rows],
            columns=["revenue", "category"],
        )
        grouped = frame.groupby("category")["revenue"].sum().sort_values(ascending=False)
        total = grouped.sum()

        return [
            {
                "category": category,
                "revenue": quantize_money(round(float(revenue), 2)),
                "share": round(float(revenue / total * 100), 1) if total else 0.0,
            }
            for category, revenue in grouped.items()
        ]

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_user_role(self, user_id: int) -> str:
        profile = self.session.get(Profile, user_id)
        if profile is None or not profile.role:
            return "customer"
        return profile.role

    def assign_user_role(self, user_id: int, role: str) -> Profile:
        if role not in USER_ROLES:
            raise StorefrontError(f"Unknown role: {role}")

        profile = self.session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")

        profile.role = role
        self.session.flush()
        logger.info(f"✓ User {user_id} is now {role}")
        return profile

    def require_role(self, user_id: int, *roles: str) -> str:
        """Raise PermissionDeniedError unless the user has one of the roles"""
        role = self.get_user_role(user_id)
        if role not in roles:
            raise PermissionDeniedError(f"This page requires role {' or '.join(roles)}")
        return role

    def list_users(self, role: Optional[str] = None) -> List[Profile]:
        query = self.session.query(Profile)
        if role:
            query = query.filter(Profile.role == role)
        return query.order_by(Profile.id).all()

    def get_pending_kyc(self):
        from pay_later_service import PayLaterService
        return PayLaterService(self.session).list_kyc_verifications(status="pending")
