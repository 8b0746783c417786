"""
Payment gateway webhook handling

Events:
- payment.success / transaction.success → payment paid, pending order moves to processing;
  on an order cancelled meanwhile the amount is refunded to the wallet instead
- payment.failed / transaction.failed → payment failed, order cancelled
- payment.pending / transaction.pending and unknown events → no change
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import Session

from currency import format_currency, to_decimal
from models import Order

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = ("payment.success", "transaction.success")
FAILED_EVENTS = ("payment.failed", "transaction.failed")
PENDING_EVENTS = ("payment.pending", "transaction.pending")


@dataclass
class WebhookResult:
    processed: bool
    message: str
    order_id: Optional[int] = None


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check the HMAC-SHA256 signature of a raw webhook body.

    Without a configured secret every payload is accepted.
    """
    if not secret:
        return True
    if not signature:
        return False

    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def process_payment_webhook(session: Session, payload: Dict) -> WebhookResult:
    """
    Apply a payment event to the matching order.

    Args:
        session: SQLAlchemy database session
        payload: {"event": ..., "data": {"transactionId": ..., "amount": ...}}

    Returns:
        WebhookResult; processed is False when nothing changed
    """
    from notification_service import NotificationService
    from order_service import OrderService, can_transition

    event = payload.get("event")
    data = payload.get("data") or {}
    transaction_id = data.get("transactionId")

    logger.info(f"Processing webhook event {event} for transaction {transaction_id}")

    if event in PENDING_EVENTS:
        return WebhookResult(processed=False, message="Payment pending")
    if event not in SUCCESS_EVENTS + FAILED_EVENTS:
        logger.warning(f"Unknown webhook event type: {event}")
        return WebhookResult(processed=False, message="Unknown event type")

    if not transaction_id:
        return WebhookResult(processed=False, message="No order found")

    order = session.query(Order).filter(Order.payment_reference == transaction_id).first()
    if order is None:
        logger.warning(f"No order found for transaction {transaction_id}")
        return WebhookResult(processed=False, message="No order found")

    orders = OrderService(session)
    amount = data.get("amount", order.total)

    if event in SUCCESS_EVENTS and order.status == "cancelled":
        if order.payment_status == "refunded":
            return WebhookResult(processed=False, message="Payment already refunded", order_id=order.id)

        from wallet_service import WalletService

        # customer cancelled while the STK push was still open
        logger.warning(f"Payment received for cancelled order {order.id}; refunding to wallet")
        WalletService(session).refund_to_wallet(
            order.user_id, to_decimal(amount), f"Refund for payment on cancelled order #{order.id}"
        )
        order.payment_status = "refunded"
        title = "Payment Refunded"
        message = (
            f"Your payment of {format_currency(amount)} arrived after the order was cancelled. "
            f"It has been added to your wallet."
        )
    elif event in SUCCESS_EVENTS:
        order.payment_status = "paid"
        if order.status == "pending":
            orders.update_order_status(order.id, "processing", description="Payment confirmed")
        title = "Payment Successful"
        message = f"Your payment of {format_currency(amount)} was successful. Your order is being processed."
    else:
        order.payment_status = "failed"
        if can_transition(order.status, "cancelled"):
            orders.update_order_status(order.id, "cancelled", description="Payment failed")
        title = "Payment Failed"
        message = f"Your payment of {format_currency(amount)} failed. Please try again."

    NotificationService(session).create_customer_notification(
        user_id=order.user_id,
        order_id=order.id,
        title=title,
        message=message,
        type="payment_update",
    )
    session.flush()

    if order.payment_status == "paid":
        from receipt_service import ReceiptService
        ReceiptService(session).auto_generate_receipt(order.id)

    logger.info(f"✓ Webhook processed for order {order.id}: {order.payment_status}, {order.status}")
    return WebhookResult(processed=True, message="Webhook processed", order_id=order.id)
