"""
Checkout: turns a cart into an order and starts payment

Decision Logic:
1. Reject an empty cart and re-check stock
2. Quote delivery from the address coordinates (warehouse when missing)
3. Validate the discount code and optional loyalty points
4. Create the order: total = subtotal - discounts + delivery fee
5. Start payment for the chosen method:
   - wallet: debited now, order paid
   - mpesa: STK push sent, gateway reference stored (webhook confirms)
   - pay_later: 30-day Pay Later record
   - bnpl: weekly installment plan
   - cod: unpaid until delivery
6. Clear the cart

Nothing is committed here; run inside DatabaseManager.session_scope() so a
failed payment step rolls the whole order back.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.orm import Session

from cart import Cart
from config import StorefrontConfig
from currency import format_currency, quantize_money, to_decimal
from delivery_calculation import calculate_delivery_fee
from discount_service import DiscountService
from errors import (
    InsufficientFundsError, InsufficientStockError, InvalidDiscountCodeError,
    PayLaterNotEligibleError, PaymentGatewayError, StorefrontError
)
from inventory_service import InventoryService
from loyalty_service import LoyaltyService
from models import DeliveryOption, Order, PAYMENT_METHODS
from mpesa_client import MpesaClient
from order_service import OrderService
from pay_later_service import PayLaterService
from wallet_service import WalletService

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    message: str
    discount_amount: Decimal = Decimal("0.00")
    points_used: int = 0
    payment_reference: Optional[str] = None


class CheckoutService:
    """Places orders from a cart"""

    def __init__(self, db_session: Session, mpesa_client: Optional[MpesaClient] = None):
        self.session = db_session
        self.mpesa_client = mpesa_client

    def _delivery_location(self, address: Dict) -> Dict[str, float]:
        if address.get("lat") is not None and address.get("lng") is not None:
            return {"lat": float(address["lat"]), "lng": float(address["lng"])}

        logger.warning("Delivery address has no coordinates, quoting from the warehouse")
        return StorefrontConfig.warehouse_location()

    def place_order(
        self,
        user_id: int,
        cart: Cart,
        address: Dict,
        delivery_option_id: Optional[int],
        payment_method: str,
        discount_code: Optional[str] = None,
        redeem_points: int = 0,
        notes: Optional[str] = None,
        phone: Optional[str] = None
    ) -> CheckoutResult:
        """
        Place an order for everything in the cart.

        Args:
            user_id: Customer profile id
            cart: Session cart; cleared on success
            address: street, city, postal_code and optionally lat/lng
            delivery_option_id: Chosen delivery option (cheapest active when None)
            payment_method: wallet, mpesa, pay_later, bnpl or cod
            discount_code: Optional code typed at checkout
            redeem_points: Loyalty points to spend as a discount
            phone: M-Pesa number (defaults to the profile phone)

        Returns:
            CheckoutResult with the new order

        Raises:
            StorefrontError: Empty cart or unsupported payment method
            InsufficientStockError: If any line exceeds stock
            InvalidDiscountCodeError: If the discount code is rejected
            InsufficientFundsError: Wallet balance, loyalty points or BNPL credit too low
            PayLaterNotEligibleError: Pay Later / BNPL without approved KYC
            PaymentGatewayError: If the STK push fails
        """
        if cart.is_empty():
            raise StorefrontError("Your cart is empty")
        if payment_method not in PAYMENT_METHODS:
            raise StorefrontError(f"Unsupported payment method: {payment_method}")

        validation = InventoryService(self.session).validate_stock(cart.items)
        if not validation.is_valid:
            raise InsufficientStockError(validation.insufficient_items)

        if payment_method in ("pay_later", "bnpl"):
            if not PayLaterService(self.session).is_eligible_for_pay_later(user_id):
                raise PayLaterNotEligibleError(
                    "Complete identity verification to use Pay Later"
                )

        subtotal = cart.subtotal

        # Delivery
        quote = calculate_delivery_fee(
            self.session, self._delivery_location(address), subtotal, delivery_option_id
        )
        option = None
        if delivery_option_id is not None:
            option = self.session.get(DeliveryOption, delivery_option_id)
        delivery_method = option.name if option else "Standard Delivery"

        # Discounts
        discount_amount = Decimal("0.00")
        discounts = DiscountService(self.session)
        code = None
        if discount_code:
            result = discounts.validate_discount_code(discount_code, subtotal)
            if not result.valid:
                raise InvalidDiscountCodeError(result.message)
            code = result.discount_code
            discount_amount = result.discount_amount

        loyalty = LoyaltyService(self.session)
        points_value = Decimal("0.00")
        points_used = 0
        if redeem_points:
            balance = loyalty.get_points(user_id)
            if redeem_points > balance:
                raise InsufficientFundsError(
                    f"Insufficient loyalty points: {balance} available, {redeem_points} requested"
                )
            points_value = min(loyalty.points_value(redeem_points), subtotal - discount_amount)
            # only spend the points the capped value needs
            ksh_per_point = to_decimal(loyalty.get_settings().ksh_per_point)
            if points_value > 0 and ksh_per_point > 0:
                points_used = min(redeem_points, math.ceil(points_value / ksh_per_point))

        total_discount = quantize_money(discount_amount + points_value)

        order = OrderService(self.session).create_order(
            user_id=user_id,
            items=cart.items,
            delivery_address=address,
            delivery_method=delivery_method,
            payment_method=payment_method,
            subtotal=subtotal,
            delivery_fee=quote.delivery_fee,
            discount=total_discount,
            notes=notes,
            estimated_delivery=quote.estimated_time,
        )

        if code is not None:
            discounts.apply_discount_code(code.id)
        if points_used:
            loyalty.deduct_points(
                user_id, points_used,
                description=f"Points used on order #{order.id}",
                order_id=order.id,
            )

        message, reference = self._start_payment(order, phone)

        cart.clear()
        logger.info(
            f"✓ Checkout complete: order {order.id}, total {order.total} "
            f"({payment_method}, discount {total_discount})"
        )
        return CheckoutResult(
            order=order,
            message=message,
            discount_amount=total_discount,
            points_used=points_used,
            payment_reference=reference,
        )

    def _start_payment(self, order: Order, phone: Optional[str]):
        """Returns (customer message, gateway reference)"""
        method = order.payment_method
        total = to_decimal(order.total)

        if method == "wallet":
            WalletService(self.session).pay_using_wallet(
                order.user_id, total, f"Payment for order #{order.id}"
            )
            order.payment_status = "paid"
            self.session.flush()

            from receipt_service import ReceiptService
            ReceiptService(self.session).auto_generate_receipt(order.id)
            return f"Paid {format_currency(total)} from your wallet", None

        if method == "mpesa":
            phone = phone or (order.user.phone if order.user else None)
            if not phone:
                raise PaymentGatewayError("A phone number is required for M-Pesa")

            client = self.mpesa_client or MpesaClient()
            push = client.initiate_stk_push(phone, total, order.id)
            order.payment_reference = push.transaction_id
            order.payment_status = "pending"
            self.session.flush()
            return push.message, push.transaction_id

        if method == "pay_later":
            pay_later = PayLaterService(self.session).create_pay_later_order(order)
            return f"Pay {format_currency(total)} by {pay_later.due_date:%d %b %Y}", None

        if method == "bnpl":
            plan = PayLaterService(self.session).create_bnpl_transaction(
                order.user_id, order.id, total
            )
            return (
                f"{plan.installments} weekly payments of "
                f"{format_currency(plan.installment_amount)}", None
            )

        return "Pay on delivery", None
