"""
Loyalty points

Earning:
- Points = floor(order total × points_per_ksh), awarded when an order is delivered

Redeeming:
- At least min_redemption_points at a time
- Converted to wallet credit at ksh_per_point

Balances never go below zero.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from currency import quantize_money, to_decimal
from errors import InsufficientFundsError, NotFoundError, StorefrontError
from models import (
    LoyaltyRedemption, LoyaltySettings, LoyaltyTransaction, Profile, utcnow
)

logger = logging.getLogger(__name__)

DEFAULT_POINTS_PER_KSH = 1.0
DEFAULT_KSH_PER_POINT = 1.0
DEFAULT_MIN_REDEMPTION_POINTS = 100


@dataclass
class LoyaltyStats:
    total_points_issued: int
    total_points_redeemed: int
    total_redemption_value: Decimal
    active_users: int
    avg_points_per_user: int


class LoyaltyService:
    """Points ledger, redemption into the wallet, and admin adjustments"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_settings(self) -> LoyaltySettings:
        """Loyalty settings; a default row is created on first read"""
        settings = self.session.query(LoyaltySettings).order_by(LoyaltySettings.id).first()
        if settings is None:
            settings = LoyaltySettings(
                points_per_ksh=DEFAULT_POINTS_PER_KSH,
                ksh_per_point=DEFAULT_KSH_PER_POINT,
                min_redemption_points=DEFAULT_MIN_REDEMPTION_POINTS,
            )
            self.session.add(settings)
            self.session.flush()
            logger.info("✓ Created default loyalty settings")
        return settings

    def update_settings(
        self,
        points_per_ksh: Optional[float] = None,
        ksh_per_point: Optional[float] = None,
        min_redemption_points: Optional[int] = None
    ) -> LoyaltySettings:
        settings = self.get_settings()

        if points_per_ksh is not None:
            if points_per_ksh < 0:
                raise StorefrontError("points_per_ksh cannot be negative")
            settings.points_per_ksh = points_per_ksh
        if ksh_per_point is not None:
            if ksh_per_point < 0:
                raise StorefrontError("ksh_per_point cannot be negative")
            settings.ksh_per_point = ksh_per_point
        if min_redemption_points is not None:
            if min_redemption_points < 0:
                raise StorefrontError("min_redemption_points cannot be negative")
            settings.min_redemption_points = min_redemption_points

        self.session.flush()
        logger.info("✓ Loyalty settings updated")
        return settings

    def _get_profile(self, user_id: int) -> Profile:
        profile = self.session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile

    def get_points(self, user_id: int) -> int:
        return self._get_profile(user_id).loyalty_points or 0

    def points_value(self, points: int) -> Decimal:
        """Wallet value of a number of points"""
        return quantize_money(to_decimal(points) * to_decimal(self.get_settings().ksh_per_point))

    def _record(self, user_id: int, points: int, transaction_type: str, source: str,
                description: str, order_id: Optional[int] = None) -> LoyaltyTransaction:
        transaction = LoyaltyTransaction(
            user_id=user_id,
            points=points,
            transaction_type=transaction_type,
            source=source,
            description=description,
            order_id=order_id,
        )
        self.session.add(transaction)
        return transaction

    def award_points(self, user_id: int, order_total, order_id: Optional[int] = None) -> int:
        """
        Award points for an order.

        Returns:
            Number of points earned (0 for tiny orders)
        """
        settings = self.get_settings()
        points = math.floor(to_decimal(order_total) * to_decimal(settings.points_per_ksh))
        if points <= 0:
            return 0

        profile = self._get_profile(user_id)
        profile.loyalty_points = (profile.loyalty_points or 0) + points
        profile.points_last_activity = utcnow()

        description = f"Points for order #{order_id}" if order_id else "Points for purchase"
        self._record(user_id, points, "earned", "order", description, order_id)
        self.session.flush()

        logger.info(f"✓ Awarded {points} loyalty points to user {user_id}")
        return points

    def deduct_points(self, user_id: int, points: int, description: str = "Points used",
                      order_id: Optional[int] = None) -> int:
        """
        Spend points.

        Raises:
            InsufficientFundsError: If the user has fewer points than requested
        """
        if points <= 0:
            raise StorefrontError("Points must be greater than zero")

        profile = self._get_profile(user_id)
        current = profile.loyalty_points or 0
        if current < points:
            raise InsufficientFundsError(f"Insufficient loyalty points: {current} available, {points} needed")

        profile.loyalty_points = current - points
        profile.points_last_activity = utcnow()
        self._record(user_id, points, "redeemed", "order", description, order_id)
        self.session.flush()

        logger.info(f"✓ Deducted {points} loyalty points from user {user_id}")
        return profile.loyalty_points

    def redeem_points(self, user_id: int, points: int) -> LoyaltyRedemption:
        """
        Convert points into wallet credit.

        Raises:
            StorefrontError: Below the minimum redemption
            InsufficientFundsError: Not enough points
        """
        from wallet_service import WalletService

        settings = self.get_settings()
        if points < settings.min_redemption_points:
            raise StorefrontError(
                f"Minimum redemption is {settings.min_redemption_points} points"
            )

        profile = self._get_profile(user_id)
        current = profile.loyalty_points or 0
        if current < points:
            raise InsufficientFundsError(f"Insufficient loyalty points: {current} available, {points} needed")

        value = self.points_value(points)

        profile.loyalty_points = current - points
        profile.points_last_activity = utcnow()

        WalletService(self.session).credit_loyalty_redemption(user_id, value, points)

        redemption = LoyaltyRedemption(
            user_id=user_id,
            points_redeemed=points,
            ksh_value=value,
            status="completed",
        )
        self.session.add(redemption)
        self._record(user_id, points, "redeemed", "wallet", f"Redeemed for KSh {value}")
        self.session.flush()

        logger.info(f"✓ User {user_id} redeemed {points} points for {value}")
        return redemption

    def adjust_user_points(self, user_id: int, points: int, reason: str,
                           is_deduction: bool = False) -> int:
        """Admin adjustment; the balance is floored at zero"""
        profile = self._get_profile(user_id)
        current = profile.loyalty_points or 0
        delta = -abs(points) if is_deduction else abs(points)

        profile.loyalty_points = max(0, current + delta)
        profile.points_last_activity = utcnow()
        self._record(user_id, abs(points), "adjusted", "admin_adjustment", reason)
        self.session.flush()

        logger.info(f"✓ Adjusted points for user {user_id}: {current} → {profile.loyalty_points}")
        return profile.loyalty_points

    def get_user_transactions(self, user_id: int, limit: int = 50) -> List[LoyaltyTransaction]:
        return self.session.query(LoyaltyTransaction).filter(
            LoyaltyTransaction.user_id == user_id
        ).order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc()).limit(limit).all()

    def get_all_transactions(self, limit: int = 100) -> List[LoyaltyTransaction]:
        return self.session.query(LoyaltyTransaction).order_by(
            LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc()
        ).limit(limit).all()

    def get_user_redemptions(self, user_id: int) -> List[LoyaltyRedemption]:
        return self.session.query(LoyaltyRedemption).filter(
            LoyaltyRedemption.user_id == user_id
        ).order_by(LoyaltyRedemption.created_at.desc(), LoyaltyRedemption.id.desc()).all()

    def get_all_redemptions(self) -> List[LoyaltyRedemption]:
        return self.session.query(LoyaltyRedemption).order_by(
            LoyaltyRedemption.created_at.desc(), LoyaltyRedemption.id.desc()
        ).all()

    def get_loyalty_stats(self) -> LoyaltyStats:
        balances = [row[0] or 0 for row in self.session.query(Profile.loyalty_points).all()]
        total_points = sum(balances)
        active_users = len([b for b in balances if b > 0])

        redeemed_points, redeemed_value = self.session.query(
            func.coalesce(func.sum(LoyaltyRedemption.points_redeemed), 0),
            func.coalesce(func.sum(LoyaltyRedemption.ksh_value), 0),
        ).filter(LoyaltyRedemption.status == "completed").one()

        issued = self.session.query(
            func.coalesce(func.sum(LoyaltyTransaction.points), 0)
        ).filter(LoyaltyTransaction.transaction_type == "earned").scalar()

        return LoyaltyStats(
            total_points_issued=int(issued),
            total_points_redeemed=int(redeemed_points),
            total_redemption_value=quantize_money(redeemed_value),
            active_users=active_users,
            avg_points_per_user=round(total_points / active_users) if active_users else 0,
        )
