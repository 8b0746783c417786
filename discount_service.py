"""
Promo codes: admin CRUD and checkout validation
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from currency import format_currency, quantize_money, to_decimal
from errors import InvalidDiscountCodeError, NotFoundError, StorefrontError
from models import DiscountCode, utcnow

logger = logging.getLogger(__name__)

DISCOUNT_TYPES = ("percentage", "fixed")
EDITABLE_FIELDS = (
    "code", "type", "value", "min_purchase", "max_discount", "usage_limit",
    "start_date", "end_date", "active", "description",
)
MONEY_FIELDS = ("value", "min_purchase", "max_discount")


@dataclass
class DiscountValidation:
    """Outcome of checking a code against a purchase amount"""
    valid: bool
    discount_amount: Decimal = Decimal("0.00")
    message: Optional[str] = None
    discount_code: Optional[DiscountCode] = None


def _normalize_code(code: str) -> str:
    return code.strip().upper()


class DiscountService:
    """Discount code management and validation"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def list_codes(self) -> List[DiscountCode]:
        return self.session.query(DiscountCode).order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc()).all()

    def get_code(self, code_id: int) -> DiscountCode:
        discount = self.session.get(DiscountCode, code_id)
        if discount is None:
            raise NotFoundError(f"Discount code {code_id} not found")
        return discount

    def create_code(
        self,
        code: str,
        type: str,
        value,
        start_date: datetime,
        end_date: datetime,
        min_purchase=None,
        max_discount=None,
        usage_limit: Optional[int] = None,
        active: bool = True,
        description: Optional[str] = None
    ) -> DiscountCode:
        """
        Create a discount code.

        Raises:
            InvalidDiscountCodeError: If the code already exists or values are invalid
        """
        code = _normalize_code(code)
        self._check_unique(code)
        self._check_values(type, value, start_date, end_date)

        discount = DiscountCode(
            code=code,
            type=type,
            value=to_decimal(value),
            min_purchase=to_decimal(min_purchase) if min_purchase is not None else None,
            max_discount=to_decimal(max_discount) if max_discount is not None else None,
            usage_limit=usage_limit,
            usage_count=0,
            start_date=start_date,
            end_date=end_date,
            active=active,
            description=description,
        )
        self.session.add(discount)
        self.session.flush()

        logger.info(f"✓ Created discount code {code}")
        return discount

    def update_code(self, code_id: int, **changes) -> DiscountCode:
        discount = self.get_code(code_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise StorefrontError(f"Unknown discount code fields: {sorted(unknown)}")

        if "code" in changes:
            changes["code"] = _normalize_code(changes["code"])
            self._check_unique(changes["code"], exclude_id=code_id)

        for field_name, value in changes.items():
            if field_name in MONEY_FIELDS and value is not None:
                value = to_decimal(value)
            setattr(discount, field_name, value)

        self._check_values(discount.type, discount.value, discount.start_date, discount.end_date)
        self.session.flush()

        logger.info(f"✓ Updated discount code {discount.code}")
        return discount

    def delete_code(self, code_id: int) -> None:
        discount = self.get_code(code_id)
        self.session.delete(discount)
        self.session.flush()
        logger.info(f"✓ Deleted discount code {code_id}")

    def _check_unique(self, code: str, exclude_id: Optional[int] = None) -> None:
        query = self.session.query(DiscountCode).filter(DiscountCode.code == code)
        if exclude_id is not None:
            query = query.filter(DiscountCode.id != exclude_id)
        if query.first():
            raise InvalidDiscountCodeError(f"A discount code '{code}' already exists")

    @staticmethod
    def _check_values(type: str, value, start_date: datetime, end_date: datetime) -> None:
        if type not in DISCOUNT_TYPES:
            raise InvalidDiscountCodeError(f"Discount type must be one of {DISCOUNT_TYPES}")
        if to_decimal(value) <= 0:
            raise InvalidDiscountCodeError("Discount value must be positive")
        if type == "percentage" and to_decimal(value) > 100:
            raise InvalidDiscountCodeError("Percentage discount cannot exceed 100")
        if end_date < start_date:
            raise InvalidDiscountCodeError("End date must be after start date")

    def validate_discount_code(
        self,
        code: str,
        purchase_amount,
        now: Optional[datetime] = None
    ) -> DiscountValidation:
        """
        Check a code against a purchase amount.

        Checks, in order: exists and active, date window, usage limit, minimum
        purchase. The discount is capped by max_discount and by the amount itself.
        """
        now = now or utcnow()
        amount = to_decimal(purchase_amount)

        discount = self.session.query(DiscountCode).filter(
            DiscountCode.code == _normalize_code(code),
            DiscountCode.active == True
        ).first()

        if discount is None:
            return DiscountValidation(valid=False, message="Invalid discount code")

        if now < discount.start_date or now > discount.end_date:
            return DiscountValidation(
                valid=False,
                message="This code has expired or is not yet active",
                discount_code=discount,
            )

        if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
            return DiscountValidation(
                valid=False,
                message="This code has reached its usage limit",
                discount_code=discount,
            )

        if discount.min_purchase is not None and amount < discount.min_purchase:
            return DiscountValidation(
                valid=False,
                message=f"This code requires a minimum purchase of {format_currency(discount.min_purchase)}",
                discount_code=discount,
            )

        if discount.type == "percentage":
            discount_amount = amount * to_decimal(discount.value) / 100
        else:
            discount_amount = to_decimal(discount.value)

        if discount.max_discount is not None and discount_amount > discount.max_discount:
            discount_amount = to_decimal(discount.max_discount)

        discount_amount = min(discount_amount, amount)

        return DiscountValidation(
            valid=True,
            discount_amount=quantize_money(discount_amount),
            discount_code=discount,
        )

    def apply_discount_code(self, code_id: int) -> DiscountCode:
        """Record one use of a code"""
        discount = self.get_code(code_id)
        discount.usage_count = (discount.usage_count or 0) + 1
        self.session.flush()
        logger.info(f"✓ Discount code {discount.code} used ({discount.usage_count})")
        return discount
