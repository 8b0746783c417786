"""
Tests for the order lifecycle, stock handling and the packer/rider flow
"""

from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from cart import CartItem
from errors import (
    BarcodeMismatchError, InsufficientStockError, InvalidStatusTransition,
    PermissionDeniedError, StorefrontError
)
from inventory_service import InventoryService
from notification_service import NotificationService
from order_flow import OrderFlowService
from order_service import (
    OrderService, can_transition, format_tracking_event, is_terminal, next_delivery_status
)
from wallet_service import WalletService


def place(session, user, lines, payment_method="cod", delivery_fee="150", address=None):
    items = [
        CartItem(product_id=p.id, name=p.name, price=p.effective_price, quantity=q)
        for p, q in lines
    ]
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    return OrderService(session).create_order(
        user_id=user.id,
        items=items,
        delivery_address=address or {"street": "Ngong Road", "city": "Nairobi", "postal_code": "00100"},
        delivery_method="Standard Delivery",
        payment_method=payment_method,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
    )


def pack(session, order, packer):
    flow = OrderFlowService(session)
    barcode = flow.start_packing(order.id, packer.id).barcode
    flow.complete_packing(order.id, packer.id, barcode)
    return barcode


# ============================================================================
# Lifecycle rules
# ============================================================================

def test_transition_table():
    assert can_transition("pending", "processing")
    assert can_transition("dispatched", "cancelled")
    assert not can_transition("out_for_delivery", "cancelled")
    assert not can_transition("pending", "delivered")
    assert not can_transition("delivered", "cancelled")

    assert is_terminal("delivered") and is_terminal("cancelled")
    assert not is_terminal("pending")

    assert next_delivery_status("dispatched") == "out_for_delivery"
    assert next_delivery_status("out_for_delivery") == "delivered"
    assert next_delivery_status("pending") is None


def test_create_order(session, jane, product):
    tomatoes = product("Tomatoes")

    order = place(session, jane, [(tomatoes, 2)])

    assert order.status == "pending"
    assert order.payment_status == "unpaid"
    assert order.subtotal == Decimal("240.00")
    assert order.total == Decimal("390.00")
    assert [e.description for e in order.tracking_events] == ["Order placed"]
    assert order.items[0].line_total == Decimal("240.00")
    # stock is not touched until packing completes
    assert tomatoes.stock == 50


def test_tracking_timeline_in_store_time(session, jane, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])
    placed = order.tracking_events[0]
    placed.timestamp = datetime(2026, 5, 15, 9, 30)

    # Nairobi is UTC+3
    assert format_tracking_event(placed) == "15 May 12:30 Order placed"

    service = OrderService(session)
    service.update_order_status(order.id, "processing", location="Westlands hub")
    lines = [format_tracking_event(e) for e in service.get_tracking_events(order.id)]
    assert lines[-1].endswith("Order is being processed (Westlands hub)")


def test_create_order_validation(session, jane, product):
    orders = OrderService(session)

    with pytest.raises(StorefrontError):
        place(session, jane, [(product("Tomatoes"), 1)], payment_method="cheque")
    with pytest.raises(StorefrontError):
        orders.create_order(jane.id, [], {}, "Standard Delivery", "cod", subtotal=0)


def test_discount_never_makes_total_negative(session, jane, product):
    tomatoes = product("Tomatoes")
    item = CartItem(product_id=tomatoes.id, name=tomatoes.name, price=tomatoes.price, quantity=1)

    order = OrderService(session).create_order(
        jane.id, [item], {}, "Standard Delivery", "cod",
        subtotal=120, delivery_fee=150, discount=500,
    )

    assert order.total == Decimal("150.00")


def test_invalid_transition_rejected(session, jane, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])

    with pytest.raises(InvalidStatusTransition) as excinfo:
        OrderService(session).update_order_status(order.id, "delivered")

    assert excinfo.value.current == "pending"
    assert order.status == "pending"


def test_list_orders_by_status(session, jane, brian, product):
    first = place(session, jane, [(product("Tomatoes"), 1)])
    place(session, brian, [(product("Bananas"), 1)])
    OrderService(session).cancel_order(first.id)

    orders = OrderService(session)
    assert [o.id for o in orders.list_orders("cancelled")] == [first.id]
    assert len(orders.list_orders()) == 2
    assert len(orders.get_user_orders(brian.id)) == 1
    with pytest.raises(StorefrontError):
        orders.list_orders("lost")


# ============================================================================
# Packer and rider flow
# ============================================================================

def test_full_fulfilment_flow(session, jane, packer, rider, product):
    tomatoes = product("Tomatoes")
    order = place(session, jane, [(tomatoes, 2)])
    flow = OrderFlowService(session)

    started = flow.start_packing(order.id, packer.id)
    assert order.status == "processing"
    assert started.barcode.startswith(f"ORD{order.id:08d}")
    assert order.packer_id == packer.id

    flow.complete_packing(order.id, packer.id, started.barcode.lower())
    assert order.status == "dispatched"
    assert order.packing_verified_by_barcode
    assert order.stock_deducted
    assert tomatoes.stock == 48

    assigned = flow.auto_assign_riders()
    assert [r.order_id for r in assigned] == [order.id]
    assert order.assigned_to == rider.id
    assert flow.get_rider_orders(rider.id) == [order]

    flow.start_delivery(order.id, rider.id)
    assert order.status == "out_for_delivery"

    flow.complete_delivery(order.id, rider.id, started.barcode, signature="Jane W.")
    assert order.status == "delivered"
    assert order.delivered_at is not None
    assert order.signature == "Jane W."
    assert order.delivery_verified_by_barcode

    # 390 total at 0.1 points per shilling
    assert jane.loyalty_points == 39

    statuses = [e.status for e in OrderService(session).get_tracking_events(order.id)]
    assert statuses == [
        "pending", "processing", "dispatched", "dispatched", "out_for_delivery", "delivered"
    ]

    titles = [n.title for n in NotificationService(session).get_user_notifications(jane.id)]
    assert set(titles) == {
        "Order Being Packed", "Order Ready for Delivery", "Order On Its Way", "Order Delivered"
    }
    assert flow.get_rider_orders(rider.id) == []


def test_barcode_mismatch_blocks_packing(session, jane, packer, product):
    tomatoes = product("Tomatoes")
    order = place(session, jane, [(tomatoes, 2)])
    flow = OrderFlowService(session)
    flow.start_packing(order.id, packer.id)

    with pytest.raises(BarcodeMismatchError):
        flow.complete_packing(order.id, packer.id, "ORD99999999ZZZZ")

    assert order.status == "processing"
    assert tomatoes.stock == 50


def test_packing_requires_packer_role(session, jane, brian, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])

    with pytest.raises(PermissionDeniedError):
        OrderFlowService(session).start_packing(order.id, brian.id)


def test_packing_twice_rejected(session, jane, packer, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])
    flow = OrderFlowService(session)
    flow.start_packing(order.id, packer.id)

    with pytest.raises(StorefrontError):
        flow.start_packing(order.id, packer.id)


def test_paid_order_already_processing_gets_barcode(session, jane, packer, product):
    order = place(session, jane, [(product("Tomatoes"), 1)], payment_method="mpesa")
    OrderService(session).update_order_status(order.id, "processing", description="Payment confirmed")

    result = OrderFlowService(session).start_packing(order.id, packer.id)

    assert order.status == "processing"
    assert result.barcode == order.barcode


def test_stock_checked_again_at_packing(session, jane, packer, product):
    rice = product("Pishori Rice")
    order = place(session, jane, [(rice, 3)])
    rice.stock = 1

    flow = OrderFlowService(session)
    flow.start_packing(order.id, packer.id)
    with pytest.raises(InsufficientStockError):
        flow.complete_packing(order.id, packer.id)

    assert rice.stock == 1
    assert not order.stock_deducted


def test_auto_assign_balances_riders(session, jane, brian, packer, rider, second_rider, product):
    first = place(session, jane, [(product("Tomatoes"), 1)])
    second = place(session, brian, [(product("Bananas"), 1)])
    third = place(session, brian, [(product("White Bread"), 1)])
    for order in (first, second, third):
        pack(session, order, packer)

    OrderFlowService(session).auto_assign_riders()

    assert first.assigned_to == rider.id
    assert second.assigned_to == second_rider.id
    assert third.assigned_to == rider.id


def test_rider_cannot_take_another_riders_order(session, jane, packer, rider, second_rider, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])
    pack(session, order, packer)
    flow = OrderFlowService(session)
    flow.assign_order_to_rider(order.id, rider.id)

    with pytest.raises(PermissionDeniedError):
        flow.start_delivery(order.id, second_rider.id)


def test_only_riders_can_be_assigned(session, jane, packer, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])
    pack(session, order, packer)

    with pytest.raises(PermissionDeniedError):
        OrderFlowService(session).assign_order_to_rider(order.id, packer.id)


def test_order_flow_stats(session, jane, packer, product):
    first = place(session, jane, [(product("Tomatoes"), 1)])
    place(session, jane, [(product("Bananas"), 1)])
    pack(session, first, packer)

    stats = OrderFlowService(session).get_order_flow_stats()

    assert stats["pending"] == 1
    assert stats["dispatched"] == 1
    assert stats["total"] == 2


# ============================================================================
# Cancellation
# ============================================================================

def test_cancel_after_packing_restores_stock(session, jane, packer, product):
    tomatoes = product("Tomatoes")
    order = place(session, jane, [(tomatoes, 5)])
    pack(session, order, packer)
    assert tomatoes.stock == 45

    OrderService(session).cancel_order(order.id, jane.id)

    assert order.status == "cancelled"
    assert tomatoes.stock == 50
    assert not order.stock_deducted


def test_cancel_before_packing_leaves_stock_alone(session, jane, product):
    tomatoes = product("Tomatoes")
    order = place(session, jane, [(tomatoes, 5)])

    OrderService(session).cancel_order(order.id)

    assert tomatoes.stock == 50


def test_cancel_refunds_wallet_payment(session, jane, product):
    wallet = WalletService(session)
    wallet.add_funds(jane.id, 1000)
    order = place(session, jane, [(product("Tomatoes"), 2)], payment_method="wallet")
    wallet.pay_using_wallet(jane.id, order.total, f"Payment for order #{order.id}")
    order.payment_status = "paid"

    OrderService(session).cancel_order(order.id)

    assert order.payment_status == "refunded"
    assert wallet.get_balance(jane.id) == Decimal("1000.00")
    assert wallet.get_wallet_transactions(jane.id)[0].transaction_type == "refund"


def test_cancel_refunds_confirmed_mpesa_payment_to_wallet(session, jane, product):
    order = place(session, jane, [(product("Tomatoes"), 2)], payment_method="mpesa")
    order.payment_status = "paid"

    OrderService(session).cancel_order(order.id, jane.id)

    assert order.payment_status == "refunded"
    assert WalletService(session).get_balance(jane.id) == Decimal("390.00")


def test_cannot_cancel_someone_elses_order(session, jane, brian, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])

    with pytest.raises(PermissionDeniedError):
        OrderService(session).cancel_order(order.id, brian.id)


def test_cannot_cancel_once_out_for_delivery(session, jane, packer, rider, product):
    order = place(session, jane, [(product("Tomatoes"), 1)])
    pack(session, order, packer)
    OrderFlowService(session).start_delivery(order.id, rider.id)

    with pytest.raises(InvalidStatusTransition):
        OrderService(session).cancel_order(order.id)


# ============================================================================
# Inventory
# ============================================================================

def test_validate_stock_sums_lines_and_flags_missing_products(session, product):
    rice = product("Pishori Rice")
    lines = [
        SimpleNamespace(product_id=rice.id, quantity=3),
        SimpleNamespace(product_id=rice.id, quantity=3),
        SimpleNamespace(product_id=9999, quantity=1),
    ]

    result = InventoryService(session).validate_stock(lines)

    assert not result.is_valid
    by_id = {i.product_id: i for i in result.insufficient_items}
    assert by_id[rice.id].available == 5
    assert by_id[rice.id].requested == 6
    assert by_id[9999].available == 0


def test_deduct_stock_is_all_or_nothing(session, product):
    tomatoes = product("Tomatoes")
    rice = product("Pishori Rice")
    lines = [
        SimpleNamespace(product_id=tomatoes.id, quantity=2),
        SimpleNamespace(product_id=rice.id, quantity=10),
    ]

    with pytest.raises(InsufficientStockError):
        InventoryService(session).deduct_stock(lines)

    assert tomatoes.stock == 50
    assert rice.stock == 5
