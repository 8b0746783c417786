"""
Streamlit UI for the FreshCart storefront

Pages:
- Shop: browse and search the catalog, AI food baskets
- Cart & Checkout: delivery quote, discount code, loyalty points, payment
- My Orders: tracking timeline, cancellation, receipts
- Wallet & Loyalty: top up, history, redeem points
- Pay Later: KYC submission, Pay Later and BNPL repayments
- Packer / Rider: barcode-verified fulfilment and route planning
- Admin: dashboard, catalog, discount codes, KYC review, roles, broadcasts
"""

from datetime import datetime

import pytz
import streamlit as st

from cart import Cart
from config import StorefrontConfig
from currency import format_currency
from errors import StorefrontError
from models import Profile

st.set_page_config(page_title=f"{StorefrontConfig.STORE_NAME} - Fresh Groceries", layout="wide")

# ============================================================================
# DATABASE INITIALIZATION
# ============================================================================


@st.cache_resource
def init_database():
    """Create the schema and seed demo data on first run"""
    from database import get_db_manager

    db_manager = get_db_manager()
    if not db_manager.health_check():
        raise RuntimeError("Database connection failed")

    db_manager.init_db(seed=True)
    return db_manager


try:
    db_manager = init_database()
except Exception as e:
    st.error(f"❌ Failed to initialize database: {e}")
    st.stop()

if "cart" not in st.session_state:
    st.session_state["cart"] = Cart()
cart: Cart = st.session_state["cart"]


def run_action(action, success_message=None):
    """Run a write in its own transaction and report the outcome"""
    try:
        with db_manager.session_scope() as session:
            result = action(session)
        if success_message:
            st.success(success_message)
        return result
    except StorefrontError as e:
        st.error(f"❌ {e}")
    return None


# ============================================================================
# SIDEBAR: SIGN-IN AND NAVIGATION
# ============================================================================

with db_manager.session_scope() as session:
    profiles = [(p.id, f"{p.full_name} ({p.role})", p.role) for p in session.query(Profile).order_by(Profile.id)]

st.sidebar.title(f"{StorefrontConfig.STORE_NAME} 🛒")
selected = st.sidebar.selectbox("Signed in as", profiles, format_func=lambda p: p[1])
user_id, _, role = selected

pages = ["Shop", f"Cart & Checkout ({cart.item_count})", "My Orders", "Wallet & Loyalty", "Pay Later"]
if role in ("packer", "admin"):
    pages.append("Packer")
if role in ("delivery", "admin"):
    pages.append("Rider")
if role == "admin":
    pages.append("Admin")

page = st.sidebar.radio("Go to", pages)

with db_manager.session_scope() as session:
    from notification_service import NotificationService
    unread = NotificationService(session).get_unread_count(user_id)
if unread:
    st.sidebar.info(f"🔔 {unread} unread notifications")


# ============================================================================
# SHOP
# ============================================================================


def render_shop():
    from catalog_service import CatalogService
    from food_basket_assistant import generate_food_basket, match_basket_products
    from units import product_unit_price

    st.title("Shop")
    col_search, col_category = st.columns([2, 1])

    with db_manager.session_scope() as session:
        catalog = CatalogService(session)
        categories = catalog.list_categories()
        with col_category:
            category = st.selectbox(
                "Category", [None] + categories,
                format_func=lambda c: "All categories" if c is None else c.name
            )
        with col_search:
            search = st.text_input("Search products", placeholder="e.g., milk, tomatoes")

        products = catalog.list_products(
            search=search or None,
            category_id=category.id if category else None,
        )

        columns = st.columns(3)
        for index, product in enumerate(products):
            with columns[index % 3]:
                st.subheader(product.name)
                price_text = format_currency(product.effective_price)
                if product.effective_price != product.price:
                    price_text += f" ~~{format_currency(product.price)}~~"
                per_unit, base_unit = product_unit_price(product)
                st.markdown(f"**{price_text}** · {product.unit} · {format_currency(per_unit)}/{base_unit}")

                if product.stock <= 0:
                    st.caption("Out of stock")
                    continue

                st.caption(f"{product.stock} in stock")
                quantity = st.number_input(
                    "Qty", min_value=1, max_value=product.stock, value=1, key=f"qty_{product.id}"
                )
                if st.button("Add to cart", key=f"add_{product.id}"):
                    cart.add_item(product, int(quantity))
                    st.success(f"✓ Added {product.name}")

    st.divider()
    st.header("AI Food Baskets 🥘")
    preferences = st.text_input("Preferences", placeholder="e.g., vegetarian, quick, no nuts")
    if st.button("Suggest a basket"):
        try:
            with st.spinner("🤖 Building a basket..."):
                basket = generate_food_basket([p.strip() for p in preferences.split(",") if p.strip()])
            st.session_state["basket"] = basket
        except (ValueError, RuntimeError) as e:
            st.error(f"❌ {e}")

    basket = st.session_state.get("basket")
    if basket:
        st.subheader(basket.name)
        st.write(basket.description)
        st.text(basket.recipe)
        with db_manager.session_scope() as session:
            matched, unmatched = match_basket_products(session, basket)
            for ingredient, product in matched:
                st.write(f"✓ {ingredient.name} → {product.name} ({format_currency(product.effective_price)})")
            for ingredient in unmatched:
                st.write(f"✗ {ingredient.name} (not available)")
            if matched and st.button("Add basket to cart"):
                for _, product in matched:
                    cart.add_item(product)
                st.success(f"✓ Added {len(matched)} items")


# ============================================================================
# CART & CHECKOUT
# ============================================================================


def render_checkout():
    from checkout_service import CheckoutService
    from delivery_calculation import calculate_delivery_fee
    from delivery_options import DeliveryOptionService
    from delivery_zones import get_delivery_time_slots
    from loyalty_service import LoyaltyService
    from models import PAYMENT_METHODS

    st.title("Cart & Checkout")
    if cart.is_empty():
        st.info("Your cart is empty")
        return

    for item in list(cart.items):
        col_name, col_qty, col_total = st.columns([3, 1, 1])
        col_name.write(f"**{item.name}** · {format_currency(item.price)}")
        quantity = col_qty.number_input(
            "Qty", min_value=0, value=item.quantity, key=f"cart_{item.product_id}"
        )
        if quantity != item.quantity:
            cart.update_quantity(item.product_id, int(quantity))
            st.rerun()
        col_total.write(format_currency(item.line_total))

    st.markdown(f"**Subtotal: {format_currency(cart.subtotal)}**")
    st.divider()

    st.subheader("Delivery")
    col_street, col_city, col_postal = st.columns(3)
    address = {
        "street": col_street.text_input("Street"),
        "city": col_city.text_input("City", value="Nairobi"),
        "postal_code": col_postal.text_input("Postal code", value="00100"),
    }
    st.session_state.setdefault("checkout_lat", StorefrontConfig.WAREHOUSE_LAT)
    st.session_state.setdefault("checkout_lng", StorefrontConfig.WAREHOUSE_LNG)

    if StorefrontConfig.GOOGLE_MAPS_API_KEY and st.button("📍 Locate address"):
        from delivery_calculation import get_coordinates_from_address
        from googlemaps_client import GoogleMapsClient, ServiceAreaError

        try:
            point = get_coordinates_from_address(
                f"{address['street']}, {address['city']}",
                GoogleMapsClient(StorefrontConfig.GOOGLE_MAPS_API_KEY)
            )
            st.session_state.checkout_lat = point["lat"]
            st.session_state.checkout_lng = point["lng"]
        except (ServiceAreaError, ValueError, StorefrontError) as e:
            st.error(str(e))

    col_lat, col_lng = st.columns(2)
    address["lat"] = col_lat.number_input("Latitude", key="checkout_lat", format="%.4f")
    address["lng"] = col_lng.number_input("Longitude", key="checkout_lng", format="%.4f")

    with db_manager.session_scope() as session:
        options = [(o.id, o.name) for o in DeliveryOptionService(session).list_options()]
        option = st.selectbox("Delivery option", options, format_func=lambda o: o[1])
        quote = calculate_delivery_fee(
            session, {"lat": address["lat"], "lng": address["lng"]}, cart.subtotal,
            option[0] if option else None
        )
        points = LoyaltyService(session).get_points(user_id)

    fee_text = "FREE" if quote.is_free_delivery else format_currency(quote.delivery_fee)
    st.write(f"{quote.distance_km} km · {fee_text} · arrives in {quote.estimated_time}")

    col_date, col_slot = st.columns(2)
    store_today = datetime.now(pytz.timezone(StorefrontConfig.STORE_TIMEZONE)).date()
    delivery_date = col_date.date_input("Preferred delivery date", value=store_today, min_value=store_today)
    slots = get_delivery_time_slots(delivery_date)
    slot = col_slot.selectbox("Time slot", slots, format_func=lambda s: s["time"]) if slots else None
    if not slots:
        col_slot.info("No slots left today")

    st.subheader("Payment")
    discount_code = st.text_input("Discount code")
    redeem_points = st.number_input(f"Use loyalty points (you have {points})", min_value=0, max_value=points, value=0)
    payment_method = st.selectbox("Payment method", PAYMENT_METHODS)
    phone = st.text_input("M-Pesa phone") if payment_method == "mpesa" else None
    notes = st.text_area("Delivery notes")
    if slot:
        notes = f"Preferred slot: {delivery_date:%d %b} {slot['time']}. {notes}".strip()

    if st.button("Place order", type="primary"):
        result = run_action(lambda session: CheckoutService(session).place_order(
            user_id=user_id,
            cart=cart,
            address=address,
            delivery_option_id=option[0] if option else None,
            payment_method=payment_method,
            discount_code=discount_code or None,
            redeem_points=int(redeem_points),
            notes=notes or None,
            phone=phone or None,
        ))
        if result:
            st.success(f"✓ Order #{result.order.id} placed: {format_currency(result.order.total)}. {result.message}")


# ============================================================================
# MY ORDERS
# ============================================================================


def render_orders():
    from notification_service import NotificationService
    from order_service import OrderService, can_transition, format_tracking_event
    from receipt_service import ReceiptService

    st.title("My Orders")
    with db_manager.session_scope() as session:
        orders = OrderService(session).get_user_orders(user_id)
        if not orders:
            st.info("No orders yet")

        for order in orders:
            with st.expander(f"Order #{order.id} · {order.status} · {format_currency(order.total)}"):
                for item in order.items:
                    st.write(f"{item.quantity} × {item.name} = {format_currency(item.line_total)}")
                st.caption(f"Payment: {order.payment_method} ({order.payment_status})")
                for event in order.tracking_events:
                    st.write(f"• {format_tracking_event(event)}")

                if can_transition(order.status, "cancelled"):
                    if st.button("Cancel order", key=f"cancel_{order.id}"):
                        run_action(
                            lambda s, oid=order.id: OrderService(s).cancel_order(oid, user_id),
                            "✓ Order cancelled"
                        )
                if st.button("Email receipt", key=f"receipt_{order.id}"):
                    run_action(
                        lambda s, oid=order.id: ReceiptService(s).auto_generate_receipt(oid),
                        "✓ Receipt generated"
                    )

        st.subheader("Notifications")
        notifications = NotificationService(session)
        for note in notifications.get_user_notifications(user_id)[:10]:
            st.write(f"{'🔵' if not note.read else '⚪'} **{note.title}**: {note.message}")
    if unread and st.button("Mark all as read"):
        run_action(lambda s: NotificationService(s).mark_all_as_read(user_id))


# ============================================================================
# WALLET & LOYALTY
# ============================================================================


def render_wallet():
    from loyalty_service import LoyaltyService
    from wallet_service import WalletService

    st.title("Wallet & Loyalty")
    with db_manager.session_scope() as session:
        wallet = WalletService(session)
        loyalty = LoyaltyService(session)
        balance = wallet.get_balance(user_id)
        points = loyalty.get_points(user_id)
        settings = loyalty.get_settings()
        col_wallet, col_points = st.columns(2)
        col_wallet.metric("Wallet balance", format_currency(balance))
        col_points.metric("Loyalty points", points, help=f"Worth {format_currency(loyalty.points_value(points))}")

        st.subheader("History")
        for tx in wallet.get_wallet_transactions(user_id)[:20]:
            st.write(f"{tx.created_at:%d %b} · {tx.description} · {format_currency(tx.amount)}")
        min_points = settings.min_redemption_points

    amount = st.number_input("Top up amount (KSh)", min_value=0, value=500, step=100)
    if st.button("Add funds"):
        run_action(lambda s: WalletService(s).add_funds(user_id, amount), f"✓ Added {format_currency(amount)}")

    redeem = st.number_input(f"Points to redeem (min {min_points})", min_value=0, max_value=points, value=0)
    if st.button("Redeem to wallet"):
        run_action(lambda s: LoyaltyService(s).redeem_points(user_id, int(redeem)), "✓ Points redeemed")


# ============================================================================
# PAY LATER
# ============================================================================


def render_pay_later():
    from pay_later_service import PayLaterService

    st.title("Pay Later")
    with db_manager.session_scope() as session:
        service = PayLaterService(session)
        kyc = service.get_kyc_status(user_id)
        credit = service.get_user_credit_info(user_id)

        if kyc is None or kyc.status == "rejected":
            st.info("Verify your identity to unlock Pay Later and BNPL")
        else:
            st.write(f"Verification status: **{kyc.status}**")
        if credit and credit.status == "approved":
            col_limit, col_used, col_available = st.columns(3)
            col_limit.metric("Credit limit", format_currency(credit.credit_limit))
            col_used.metric("Used", format_currency(credit.credit_used))
            col_available.metric("Available", format_currency(credit.credit_available))

        for pay_later in service.get_user_pay_later_orders(user_id):
            outstanding = pay_later.total_amount - pay_later.paid_amount
            st.write(
                f"Order #{pay_later.order_id}: {format_currency(outstanding)} due "
                f"{pay_later.due_date:%d %b %Y} ({pay_later.status})"
            )
            if pay_later.status in ("active", "overdue") and st.button("Pay from wallet", key=f"pl_{pay_later.id}"):
                run_action(
                    lambda s, pid=pay_later.id, amt=outstanding:
                        PayLaterService(s).make_pay_later_payment(pid, amt, "wallet"),
                    "✓ Payment received"
                )

        for plan in service.get_user_bnpl_transactions(user_id):
            st.write(f"BNPL #{plan.id}: {format_currency(plan.paid_amount)} of {format_currency(plan.total_amount)} paid")
            for installment in plan.installment_rows:
                label = f"{installment.installment_number}. {format_currency(installment.amount)} due {installment.due_date:%d %b}"
                if installment.status in ("pending", "overdue"):
                    if st.button(f"Pay {label}", key=f"inst_{installment.id}"):
                        run_action(
                            lambda s, iid=installment.id: PayLaterService(s).pay_installment(iid, "wallet"),
                            "✓ Installment paid"
                        )
                else:
                    st.caption(f"{label} · {installment.status}")

    st.subheader("Identity verification")
    id_url = st.text_input("ID document URL")
    proof_url = st.text_input("Proof of address URL")
    if st.button("Submit for verification"):
        run_action(
            lambda s: PayLaterService(s).submit_kyc_verification(user_id, id_url, proof_url),
            "✓ Submitted for review"
        )


# ============================================================================
# PACKER
# ============================================================================


def render_packer():
    import streamlit.components.v1 as components

    from order_barcode import generate_delivery_sticker
    from order_flow import OrderFlowService

    st.title("Packing")
    with db_manager.session_scope() as session:
        flow = OrderFlowService(session)
        st.write(flow.get_order_flow_stats())
        queue = flow.get_packing_queue()
        if not queue:
            st.info("Nothing to pack")

        for order in queue:
            with st.expander(f"Order #{order.id} · {order.status} · {order.delivery_method}"):
                for item in order.items:
                    st.write(f"{item.quantity} × {item.name}")

                if not order.barcode:
                    if st.button("Start packing", key=f"pack_{order.id}"):
                        run_action(lambda s, oid=order.id: OrderFlowService(s).start_packing(oid, user_id),
                                   "✓ Packing started")
                    continue

                components.html(generate_delivery_sticker(
                    barcode=order.barcode,
                    customer_name=order.user.full_name,
                    customer_phone=order.user.phone or "",
                    address=order.delivery_address,
                    order_id=order.id,
                    delivery_method=order.delivery_method,
                    order_date=order.created_at,
                    store_name=StorefrontConfig.STORE_NAME,
                ), height=420)
                scanned = st.text_input("Scan barcode", key=f"scan_{order.id}")
                if st.button("Complete packing", key=f"done_{order.id}"):
                    run_action(
                        lambda s, oid=order.id: OrderFlowService(s).complete_packing(oid, user_id, scanned or None),
                        "✓ Order dispatched"
                    )

    if st.button("Auto-assign riders"):
        results = run_action(lambda s: OrderFlowService(s).auto_assign_riders())
        if results is not None:
            st.success(f"✓ Assigned {len(results)} orders")


# ============================================================================
# RIDER
# ============================================================================


def render_rider():
    from order_flow import OrderFlowService
    from route_planner import estimate_arrival_times, optimize_delivery_route

    st.title("Deliveries")
    with db_manager.session_scope() as session:
        orders = OrderFlowService(session).get_rider_orders(user_id)
        if not orders:
            st.info("No deliveries assigned")
            return

        route = optimize_delivery_route(orders)
        st.write(
            f"Route: {route.total_distance_km} km · about {route.total_minutes} min · "
            f"{route.efficiency}% shorter than priority order"
        )
        maps_client = None
        if StorefrontConfig.GOOGLE_MAPS_API_KEY:
            from googlemaps_client import GoogleMapsClient
            maps_client = GoogleMapsClient(StorefrontConfig.GOOGLE_MAPS_API_KEY)

        from googlemaps.exceptions import ApiError, Timeout, TransportError

        try:
            arrivals = estimate_arrival_times(route, maps_client=maps_client)
        except (ApiError, TransportError, Timeout, ValueError) as e:
            st.caption(f"Live traffic unavailable ({e}), using estimated speeds")
            arrivals = estimate_arrival_times(route)

        for arrival in arrivals:
            st.write(f"Order #{arrival['order_id']}: ETA {arrival['estimated_arrival']:%H:%M}")

        for order in orders:
            with st.expander(f"Order #{order.id} · {order.status} · {order.delivery_address.get('street', '')}"):
                if order.status == "dispatched":
                    if st.button("Start delivery", key=f"go_{order.id}"):
                        run_action(lambda s, oid=order.id: OrderFlowService(s).start_delivery(oid, user_id),
                                   "✓ On the way")
                elif order.status == "out_for_delivery":
                    scanned = st.text_input("Scan barcode", key=f"dscan_{order.id}")
                    signature = st.text_input("Received by", key=f"sig_{order.id}")
                    if st.button("Complete delivery", key=f"deliver_{order.id}"):
                        run_action(
                            lambda s, oid=order.id: OrderFlowService(s).complete_delivery(
                                oid, user_id, scanned or None, signature or None),
                            "✓ Delivered"
                        )


# ============================================================================
# ADMIN
# ============================================================================


def render_admin():
    import pandas as pd

    from admin_service import AdminService
    from catalog_service import CatalogService
    from discount_service import DiscountService
    from models import USER_ROLES
    from notification_service import NotificationService
    from pay_later_service import PayLaterService

    st.title("Admin")
    tab_dash, tab_catalog, tab_codes, tab_kyc, tab_users, tab_broadcast = st.tabs(
        ["Dashboard", "Catalog", "Discount codes", "KYC", "Users", "Broadcasts"]
    )

    with db_manager.session_scope() as session:
        admin = AdminService(session)

        with tab_dash:
            stats = admin.get_dashboard_stats()
            col1, col2, col3, col4 = st.columns(4)
            col1.metric("Orders today", stats.today_orders, format_currency(stats.today_revenue))
            col2.metric("Revenue this month", format_currency(stats.month_revenue),
                        f"{stats.revenue_growth}%" if stats.revenue_growth is not None else None)
            col3.metric("Pending orders", stats.pending_orders)
            col4.metric("Customers", stats.total_customers)
            revenue = pd.DataFrame(stats.monthly_revenue).set_index("month")
            st.bar_chart(revenue["revenue"].astype(float))
            if stats.category_share:
                st.dataframe(pd.DataFrame(stats.category_share))
            if stats.low_stock:
                st.warning("Low stock: " + ", ".join(f"{p['name']} ({p['stock']})" for p in stats.low_stock))

        with tab_catalog:
            for product in CatalogService(session).list_products():
                new_stock = st.number_input(product.name, min_value=0, value=product.stock, key=f"stock_{product.id}")
                if new_stock != product.stock:
                    run_action(lambda s, pid=product.id, n=new_stock: CatalogService(s).update_product(pid, stock=int(n)))

        with tab_codes:
            for code in DiscountService(session).list_codes():
                st.write(f"**{code.code}** · {code.type} {code.value} · used {code.usage_count}/{code.usage_limit or '∞'}")

        with tab_kyc:
            for kyc in admin.get_pending_kyc():
                st.write(f"User {kyc.user_id}: {kyc.id_document_url}, {kyc.address_proof_url}")
                limit = st.number_input("Credit limit", min_value=0, value=5000, key=f"limit_{kyc.id}")
                col_ok, col_no = st.columns(2)
                if col_ok.button("Approve", key=f"approve_{kyc.id}"):
                    run_action(lambda s, uid=kyc.user_id, lim=limit: PayLaterService(s).review_kyc(uid, True, lim),
                               "✓ Approved")
                if col_no.button("Reject", key=f"reject_{kyc.id}"):
                    run_action(lambda s, uid=kyc.user_id: PayLaterService(s).review_kyc(uid, False), "Rejected")

        with tab_users:
            for profile in admin.list_users():
                new_role = st.selectbox(
                    profile.email, USER_ROLES, index=USER_ROLES.index(profile.role), key=f"role_{profile.id}"
                )
                if new_role != profile.role:
                    run_action(lambda s, pid=profile.id, r=new_role: AdminService(s).assign_user_role(pid, r),
                               f"✓ {profile.email} is now {new_role}")

    with tab_broadcast:
        title = st.text_input("Title")
        message = st.text_area("Message")
        if st.button("Send to everyone") and title and message:
            run_action(
                lambda s: NotificationService(s).create_notification(title, message, status="sent"),
                "✓ Notification sent"
            )


if page == "Shop":
    render_shop()
elif page.startswith("Cart"):
    render_checkout()
elif page == "My Orders":
    render_orders()
elif page == "Wallet & Loyalty":
    render_wallet()
elif page == "Pay Later":
    render_pay_later()
elif page == "Packer":
    render_packer()
elif page == "Rider":
    render_rider()
elif page == "Admin":
    render_admin()
