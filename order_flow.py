"""
Fulfilment flow: packers and riders

Packer:
1. start_packing → barcode generated, order is processing
2. complete_packing → barcode scan checked, stock deducted, order dispatched

Rider:
3. assign_order_to_rider (admin or auto_assign_riders)
4. start_delivery → out_for_delivery
5. complete_delivery → barcode scan checked, delivered
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import BarcodeMismatchError, NotFoundError, PermissionDeniedError, StorefrontError
from models import ORDER_STATUSES, Order, Profile, utcnow
from order_barcode import generate_order_barcode
from order_service import NOTIFICATION_MESSAGES, NOTIFICATION_TITLES, OrderService

logger = logging.getLogger(__name__)

FULFILMENT_CENTER = "Fulfillment Center"
PACKER_ROLES = ("packer", "admin")
RIDER_ROLES = ("delivery",)
ACTIVE_DELIVERY_STATUSES = ("dispatched", "out_for_delivery")


@dataclass
class OrderFlowResult:
    order_id: int
    message: str
    barcode: Optional[str] = None


class OrderFlowService:
    """Moves orders through packing and delivery"""

    def __init__(self, db_session: Session):
        self.session = db_session
        self.orders = OrderService(db_session)

    def _require_profile(self, user_id: int, roles: tuple) -> Profile:
        profile = self.session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        if profile.role not in roles:
            raise PermissionDeniedError(
                f"User {user_id} has role '{profile.role}', needs one of {roles}"
            )
        return profile

    @staticmethod
    def _require_status(order: Order, *statuses: str) -> None:
        if order.status not in statuses:
            raise StorefrontError(
                f"Order {order.id} is '{order.status}', expected {' or '.join(statuses)}"
            )

    @staticmethod
    def _check_barcode(order: Order, scanned_barcode: Optional[str]) -> bool:
        if not scanned_barcode:
            return False
        if scanned_barcode.strip().upper() != (order.barcode or ""):
            raise BarcodeMismatchError("Barcode does not match! Please scan the correct package.")
        return True

    # Packing

    def start_packing(self, order_id: int, packer_id: int) -> OrderFlowResult:
        """
        Start packing an order and generate its package barcode.

        Pending orders move to processing; orders already processing (e.g.
        after an M-Pesa payment confirmation) just get their barcode.
        """
        from notification_service import NotificationService

        self._require_profile(packer_id, PACKER_ROLES)
        order = self.orders.get_order(order_id)
        self._require_status(order, "pending", "processing")

        if order.barcode:
            raise StorefrontError(f"Packing already started for order {order_id}")

        order.barcode = generate_order_barcode(order.id)
        order.packer_id = packer_id
        order.packing_started_at = utcnow()
        description = f"Order packing started. Barcode: {order.barcode}"

        if order.status == "pending":
            self.orders.update_order_status(
                order_id, "processing",
                location=FULFILMENT_CENTER, description=description, actor_id=packer_id
            )
        else:
            self.orders.add_tracking_event(
                order_id, "processing", description,
                location=FULFILMENT_CENTER, created_by=packer_id
            )
            NotificationService(self.session).create_customer_notification(
                user_id=order.user_id,
                order_id=order.id,
                title=NOTIFICATION_TITLES["processing"],
                message=NOTIFICATION_MESSAGES["processing"],
            )

        self.session.flush()
        logger.info(f"✓ Packing started for order {order_id} by {packer_id}: {order.barcode}")
        return OrderFlowResult(order_id, "Order packing started", order.barcode)

    def complete_packing(self, order_id: int, packer_id: int,
                         scanned_barcode: Optional[str] = None) -> OrderFlowResult:
        """
        Finish packing: verify the scanned barcode, deduct stock, dispatch.

        Raises:
            BarcodeMismatchError: If a scanned barcode does not match the order
            InsufficientStockError: If stock ran out since checkout
        """
        from inventory_service import InventoryService

        self._require_profile(packer_id, PACKER_ROLES)
        order = self.orders.get_order(order_id)
        self._require_status(order, "processing")

        if not order.barcode:
            raise StorefrontError(f"Packing has not been started for order {order_id}")

        verified = self._check_barcode(order, scanned_barcode)

        if not order.stock_deducted:
            InventoryService(self.session).deduct_stock(order.items)
            order.stock_deducted = True

        order.packing_completed_at = utcnow()
        order.packing_verified_by_barcode = verified

        self.orders.update_order_status(
            order_id, "dispatched",
            location=FULFILMENT_CENTER,
            description="Order packed and verified. Ready for delivery pickup",
            actor_id=packer_id,
        )

        logger.info(f"✓ Order {order_id} packed (barcode verified: {verified})")
        return OrderFlowResult(order_id, "Order packed and ready for pickup", order.barcode)

    def get_packing_queue(self) -> List[Order]:
        """Orders waiting to be packed or being packed, oldest first"""
        return self.session.query(Order).filter(
            Order.status.in_(("pending", "processing"))
        ).order_by(Order.created_at, Order.id).all()

    # Delivery

    def assign_order_to_rider(self, order_id: int, rider_id: int) -> OrderFlowResult:
        self._require_profile(rider_id, RIDER_ROLES)
        order = self.orders.get_order(order_id)
        self._require_status(order, "dispatched")

        order.assigned_to = rider_id
        self.orders.add_tracking_event(order_id, "dispatched", "Rider assigned for delivery")

        logger.info(f"✓ Order {order_id} assigned to rider {rider_id}")
        return OrderFlowResult(order_id, "Rider assigned", order.barcode)

    def auto_assign_riders(self) -> List[OrderFlowResult]:
        """
        Assign every unassigned dispatched order to the least-loaded rider.

        Load is the number of dispatched or out-for-delivery orders a rider
        holds; ties go to the lowest rider id.
        """
        riders = self.session.query(Profile).filter(
            Profile.role.in_(RIDER_ROLES)
        ).order_by(Profile.id).all()

        if not riders:
            logger.warning("No delivery riders available for assignment")
            return []

        load_rows = self.session.query(
            Order.assigned_to, func.count(Order.id)
        ).filter(
            Order.status.in_(ACTIVE_DELIVERY_STATUSES),
            Order.assigned_to.isnot(None)
        ).group_by(Order.assigned_to).all()
        load = {rider.id: 0 for rider in riders}
        for rider_id, count in load_rows:
            if rider_id in load:
                load[rider_id] = count

        unassigned = self.session.query(Order).filter(
            Order.status == "dispatched",
            Order.assigned_to.is_(None)
        ).order_by(Order.created_at, Order.id).all()

        results = []
        for order in unassigned:
            rider_id = min(load, key=lambda r: (load[r], r))
            results.append(self.assign_order_to_rider(order.id, rider_id))
            load[rider_id] += 1

        logger.info(f"✓ Auto-assigned {len(results)} orders across {len(riders)} riders")
        return results

    def start_delivery(self, order_id: int, rider_id: int) -> OrderFlowResult:
        self._require_profile(rider_id, RIDER_ROLES)
        order = self.orders.get_order(order_id)
        self._require_status(order, "dispatched")

        if order.assigned_to is not None and order.assigned_to != rider_id:
            raise PermissionDeniedError(f"Order {order_id} is assigned to another rider")

        order.assigned_to = rider_id
        self.orders.update_order_status(
            order_id, "out_for_delivery",
            description="Order picked up and out for delivery", actor_id=rider_id
        )
        return OrderFlowResult(order_id, "Delivery started", order.barcode)

    def complete_delivery(
        self,
        order_id: int,
        rider_id: int,
        scanned_barcode: Optional[str] = None,
        signature: Optional[str] = None
    ) -> OrderFlowResult:
        """
        Hand over the package.

        Raises:
            BarcodeMismatchError: If a scanned barcode does not match the order
        """
        self._require_profile(rider_id, RIDER_ROLES)
        order = self.orders.get_order(order_id)
        self._require_status(order, "out_for_delivery")

        if order.assigned_to != rider_id:
            raise PermissionDeniedError(f"Order {order_id} is assigned to another rider")

        verified = self._check_barcode(order, scanned_barcode)
        order.delivery_verified_by_barcode = verified

        description = (
            "Order delivered and verified by barcode scan" if verified
            else "Order has been delivered"
        )
        self.orders.update_order_status(
            order_id, "delivered",
            signature=signature, description=description, actor_id=rider_id
        )
        return OrderFlowResult(order_id, "Delivery completed", order.barcode)

    def get_rider_orders(self, rider_id: int, active_only: bool = True) -> List[Order]:
        query = self.session.query(Order).filter(Order.assigned_to == rider_id)
        if active_only:
            query = query.filter(Order.status.in_(ACTIVE_DELIVERY_STATUSES))
        return query.order_by(Order.created_at, Order.id).all()

    def get_order_flow_stats(self) -> Dict[str, int]:
        """Order counts per status plus the total"""
        stats = {status: 0 for status in ORDER_STATUSES}
        rows = self.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        for status, count in rows:
            if status in stats:
                stats[status] = count
        stats["total"] = sum(count for _, count in rows)
        return stats
