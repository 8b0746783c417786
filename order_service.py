"""
Order lifecycle

Status flow: pending → processing → dispatched → out_for_delivery → delivered
Cancellation is allowed before the rider leaves (pending, processing, dispatched).
delivered and cancelled are terminal.

Side effects of a status change:
- A tracking event with the status description
- A customer notification
- delivered → delivered_at/signature set, loyalty points awarded
- cancelled → stock restored if it had been deducted, wallet and M-Pesa
  payments refunded to the wallet, Pay Later/BNPL credit closed
"""

import logging
from typing import Dict, Iterable, List, Optional

import pytz
from sqlalchemy.orm import Session

from config import StorefrontConfig
from currency import quantize_money, to_decimal
from errors import InvalidStatusTransition, NotFoundError, PermissionDeniedError, StorefrontError
from models import (
    ORDER_STATUSES, PAYMENT_METHODS, Order, OrderItem, OrderTrackingEvent, utcnow
)

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS: Dict[str, tuple] = {
    "pending": ("processing", "cancelled"),
    "processing": ("dispatched", "cancelled"),
    "dispatched": ("out_for_delivery", "cancelled"),
    "out_for_delivery": ("delivered",),
    "delivered": (),
    "cancelled": (),
}

STATUS_DESCRIPTIONS = {
    "pending": "Order placed",
    "processing": "Order is being processed",
    "dispatched": "Order has been dispatched",
    "out_for_delivery": "Order is out for delivery",
    "delivered": "Order has been delivered",
    "cancelled": "Order has been cancelled",
}

NOTIFICATION_TITLES = {
    "processing": "Order Being Packed",
    "dispatched": "Order Ready for Delivery",
    "out_for_delivery": "Order On Its Way",
    "delivered": "Order Delivered",
    "cancelled": "Order Cancelled",
}

NOTIFICATION_MESSAGES = {
    "processing": "Your order is now being packed by our team.",
    "dispatched": "Your order has been packed and is waiting for pickup.",
    "out_for_delivery": "Your order is on its way! Track it in real-time.",
    "delivered": "Your order has been delivered. Enjoy!",
    "cancelled": "Your order has been cancelled.",
}


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, ())


def next_delivery_status(current: str) -> Optional[str]:
    """The next status a rider moves an order to, or None"""
    return {
        "dispatched": "out_for_delivery",
        "out_for_delivery": "delivered",
    }.get(current)


def is_terminal(status: str) -> bool:
    return not STATUS_TRANSITIONS.get(status)


def format_tracking_event(event: OrderTrackingEvent) -> str:
    """Timeline line for the customer, in store-local time"""
    tz = pytz.timezone(StorefrontConfig.STORE_TIMEZONE)
    when = pytz.utc.localize(event.timestamp).astimezone(tz)
    line = f"{when:%d %b %H:%M} {event.description}"
    if event.location:
        line += f" ({event.location})"
    return line


class OrderService:
    """Creates orders and moves them through the lifecycle"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def create_order(
        self,
        user_id: int,
        items: Iterable,
        delivery_address: Dict,
        delivery_method: str,
        payment_method: str,
        subtotal,
        delivery_fee=0,
        discount=0,
        notes: Optional[str] = None,
        estimated_delivery: Optional[str] = None
    ) -> Order:
        """
        Create a pending order with an "Order placed" tracking event.

        Args:
            items: Lines with product_id, name, price and quantity (e.g. CartItem)
            delivery_address: street, city, postal_code, lat, lng, notes
            delivery_method: Delivery option name
            payment_method: One of PAYMENT_METHODS

        Returns:
            The new Order (flushed, so it has an id)
        """
        if payment_method not in PAYMENT_METHODS:
            raise StorefrontError(f"Unsupported payment method: {payment_method}")

        items = list(items)
        if not items:
            raise StorefrontError("Cannot create an order without items")

        subtotal = quantize_money(subtotal)
        delivery_fee = quantize_money(delivery_fee)
        discount = quantize_money(discount)
        total = quantize_money(max(subtotal - discount, to_decimal(0)) + delivery_fee)

        order = Order(
            user_id=user_id,
            status="pending",
            delivery_address=dict(delivery_address),
            delivery_method=delivery_method,
            payment_method=payment_method,
            payment_status="unpaid",
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            discount=discount,
            total=total,
            notes=notes,
            estimated_delivery=estimated_delivery,
        )
        for item in items:
            order.items.append(OrderItem(
                product_id=item.product_id,
                name=item.name,
                price=quantize_money(item.price),
                quantity=item.quantity,
            ))
        order.tracking_events.append(OrderTrackingEvent(
            status="pending",
            description=STATUS_DESCRIPTIONS["pending"],
        ))

        self.session.add(order)
        self.session.flush()

        logger.info(f"✓ Created order {order.id} for user {user_id}: {total} via {payment_method}")
        return order

    def get_order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_user_orders(self, user_id: int) -> List[Order]:
        """Newest first"""
        return self.session.query(Order).filter(
            Order.user_id == user_id
        ).order_by(Order.created_at.desc(), Order.id.desc()).all()

    def list_orders(self, status: Optional[str] = None) -> List[Order]:
        query = self.session.query(Order)
        if status is not None:
            if status not in ORDER_STATUSES:
                raise StorefrontError(f"Unknown order status: {status}")
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    def add_tracking_event(
        self,
        order_id: int,
        status: str,
        description: str,
        location: Optional[str] = None,
        created_by: Optional[int] = None
    ) -> OrderTrackingEvent:
        order = self.get_order(order_id)
        event = OrderTrackingEvent(
            status=status,
            description=description,
            location=location,
            created_by=created_by,
        )
        order.tracking_events.append(event)
        self.session.flush()
        return event

    def get_tracking_events(self, order_id: int) -> List[OrderTrackingEvent]:
        """Oldest first"""
        return self.session.query(OrderTrackingEvent).filter(
            OrderTrackingEvent.order_id == order_id
        ).order_by(OrderTrackingEvent.timestamp, OrderTrackingEvent.id).all()

    def update_order_status(
        self,
        order_id: int,
        status: str,
        signature: Optional[str] = None,
        location: Optional[str] = None,
        description: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> Order:
        """
        Move an order to a new status.

        Raises:
            InvalidStatusTransition: If the lifecycle does not allow the change
        """
        from notification_service import NotificationService

        if status not in ORDER_STATUSES:
            raise StorefrontError(f"Unknown order status: {status}")

        order = self.get_order(order_id)
        previous = order.status

        if not can_transition(previous, status):
            raise InvalidStatusTransition(previous, status)

        order.status = status
        order.updated_at = utcnow()

        if status == "delivered":
            order.delivered_at = utcnow()
            if signature:
                order.signature = signature

        order.tracking_events.append(OrderTrackingEvent(
            status=status,
            description=description or STATUS_DESCRIPTIONS[status],
            location=location,
            created_by=actor_id,
        ))

        if status == "delivered":
            self._award_loyalty(order)
        elif status == "cancelled":
            self._release_cancelled(order)

        NotificationService(self.session).create_customer_notification(
            user_id=order.user_id,
            order_id=order.id,
            title=NOTIFICATION_TITLES.get(status, "Order Update"),
            message=NOTIFICATION_MESSAGES.get(status, STATUS_DESCRIPTIONS[status]),
        )

        self.session.flush()
        logger.info(f"✓ Order {order_id}: {previous} → {status}")
        return order

    def cancel_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        """
        Cancel an order. When user_id is given the order must belong to that user.
        """
        order = self.get_order(order_id)
        if user_id is not None and order.user_id != user_id:
            raise PermissionDeniedError("You can only cancel your own orders")
        return self.update_order_status(order_id, "cancelled")

    def _award_loyalty(self, order: Order) -> None:
        from loyalty_service import LoyaltyService

        LoyaltyService(self.session).award_points(order.user_id, order.total, order.id)

    def _release_cancelled(self, order: Order) -> None:
        from inventory_service import InventoryService
        from wallet_service import WalletService

        if order.stock_deducted:
            InventoryService(self.session).restore_stock(order.items)
            order.stock_deducted = False

        if order.payment_method in ("wallet", "mpesa") and order.payment_status == "paid":
            WalletService(self.session).refund_to_wallet(
                order.user_id, order.total, f"Refund for cancelled order #{order.id}"
            )
            order.payment_status = "refunded"
        elif order.payment_method in ("pay_later", "bnpl"):
            from pay_later_service import PayLaterService

            if PayLaterService(self.session).cancel_order_credit(order.id) > 0:
                order.payment_status = "refunded"
