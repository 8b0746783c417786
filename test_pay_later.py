"""
Tests for KYC, Pay Later and BNPL installments
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from errors import InsufficientFundsError, NotFoundError, PayLaterNotEligibleError, StorefrontError
from models import Order
from order_service import OrderService
from pay_later_service import PayLaterService
from wallet_service import WalletService


def make_order(session, user, total="1200.00", payment_method="pay_later"):
    order = Order(
        user_id=user.id,
        delivery_address={"street": "Ngong Road", "city": "Nairobi"},
        payment_method=payment_method,
        subtotal=Decimal(total),
        total=Decimal(total),
    )
    session.add(order)
    session.flush()
    return order


# ============================================================================
# KYC
# ============================================================================

def test_submit_and_review_kyc(session, brian):
    service = PayLaterService(session)

    kyc = service.submit_kyc_verification(brian.id, "kyc/brian/id.jpg", "kyc/brian/bill.pdf")
    assert kyc.status == "pending"
    assert not service.is_eligible_for_pay_later(brian.id)
    assert [k.user_id for k in service.list_kyc_verifications("pending")] == [brian.id]

    service.review_kyc(brian.id, approve=True, credit_limit=5000, credit_score=680)

    assert service.is_eligible_for_pay_later(brian.id)
    credit = service.get_user_credit_info(brian.id)
    assert credit.credit_limit == Decimal("5000.00")
    assert credit.credit_available == Decimal("5000.00")
    assert credit.credit_score == 680


def test_resubmission_goes_back_to_pending(session, jane):
    service = PayLaterService(session)

    kyc = service.submit_kyc_verification(jane.id, "kyc/jane/new-id.jpg", "kyc/jane/new-bill.pdf")

    assert kyc.status == "pending"
    assert kyc.id_document_url == "kyc/jane/new-id.jpg"
    assert not service.is_eligible_for_pay_later(jane.id)


def test_rejection_clears_credit_limit(session, jane):
    service = PayLaterService(session)

    kyc = service.review_kyc(jane.id, approve=False, admin_notes="Document unreadable")

    assert kyc.status == "rejected"
    assert kyc.credit_limit == Decimal("0.00")
    assert kyc.admin_notes == "Document unreadable"


def test_review_unknown_kyc(session, brian):
    with pytest.raises(NotFoundError):
        PayLaterService(session).review_kyc(brian.id, approve=True)


# ============================================================================
# Pay Later
# ============================================================================

def test_pay_later_requires_approved_kyc(session, brian):
    with pytest.raises(PayLaterNotEligibleError):
        PayLaterService(session).create_pay_later_order(make_order(session, brian))


def test_pay_later_due_in_thirty_days(session, jane):
    now = datetime(2026, 3, 2, 10, 0)

    pay_later = PayLaterService(session).create_pay_later_order(make_order(session, jane), now=now)

    assert pay_later.due_date == datetime(2026, 4, 1, 10, 0)
    assert pay_later.total_amount == Decimal("1200.00")
    assert pay_later.status == "active"


def test_pay_later_partial_then_full_payment(session, jane):
    service = PayLaterService(session)
    order = make_order(session, jane)
    pay_later = service.create_pay_later_order(order)

    service.make_pay_later_payment(pay_later.id, 500)
    assert pay_later.status == "active"
    assert pay_later.paid_amount == Decimal("500.00")

    service.make_pay_later_payment(pay_later.id, 700)
    assert pay_later.status == "completed"
    assert order.payment_status == "paid"

    with pytest.raises(StorefrontError):
        service.make_pay_later_payment(pay_later.id, 1)


def test_pay_later_payment_limits(session, jane):
    service = PayLaterService(session)
    pay_later = service.create_pay_later_order(make_order(session, jane))

    with pytest.raises(StorefrontError):
        service.make_pay_later_payment(pay_later.id, 0)
    with pytest.raises(StorefrontError):
        service.make_pay_later_payment(pay_later.id, 1200.01)


def test_pay_later_from_wallet(session, jane):
    service = PayLaterService(session)
    wallet = WalletService(session)
    wallet.add_funds(jane.id, 300)
    pay_later = service.create_pay_later_order(make_order(session, jane))

    service.make_pay_later_payment(pay_later.id, 300, payment_method="wallet")
    assert wallet.get_balance(jane.id) == Decimal("0.00")

    with pytest.raises(InsufficientFundsError):
        service.make_pay_later_payment(pay_later.id, 100, payment_method="wallet")


def test_mark_overdue(session, jane):
    service = PayLaterService(session)
    created = datetime(2026, 1, 1, 9, 0)
    late = service.create_pay_later_order(make_order(session, jane), now=created)
    on_time = service.create_pay_later_order(make_order(session, jane), now=datetime(2026, 2, 20, 9, 0))
    plan = service.create_bnpl_transaction(jane.id, None, 400, today=date(2026, 2, 1))

    marked = service.mark_overdue(now=datetime(2026, 2, 10, 12, 0))

    assert late.status == "overdue"
    assert on_time.status == "active"
    # installment 1 was due 8 Feb; installment 2 is due 15 Feb
    assert [i.status for i in plan.installment_rows] == ["overdue", "pending", "pending", "pending"]
    assert plan.status == "overdue"
    assert marked == 2


# ============================================================================
# BNPL
# ============================================================================

def test_bnpl_schedule(session, jane):
    today = date(2026, 3, 2)

    plan = PayLaterService(session).create_bnpl_transaction(jane.id, None, 1001, today=today)

    assert plan.total_amount == Decimal("1001.00")
    # ceil(1001 / 4)
    assert plan.installment_amount == Decimal("251")
    assert plan.next_payment_date == today + timedelta(days=7)
    assert plan.due_date == today + timedelta(days=28)
    assert [i.due_date for i in plan.installment_rows] == [
        today + timedelta(days=7 * n) for n in range(1, 5)
    ]
    assert [i.amount for i in plan.installment_rows] == [Decimal("251")] * 3 + [Decimal("248.00")]
    assert all(i.status == "pending" for i in plan.installment_rows)


def test_bnpl_limited_by_available_credit(session, jane):
    service = PayLaterService(session)
    service.create_bnpl_transaction(jane.id, None, 9000)

    with pytest.raises(InsufficientFundsError):
        service.create_bnpl_transaction(jane.id, None, 1000.01)

    assert service.get_user_credit_info(jane.id).credit_available == Decimal("1000.00")


def test_bnpl_requires_kyc(session, brian):
    with pytest.raises(PayLaterNotEligibleError):
        PayLaterService(session).create_bnpl_transaction(brian.id, None, 100)


def test_bnpl_installment_payments(session, jane):
    service = PayLaterService(session)
    order = make_order(session, jane, total="400.00")
    plan = service.create_bnpl_transaction(jane.id, order.id, 400, today=date(2026, 3, 2))
    installments = service.get_transaction_installments(plan.id)

    service.pay_installment(installments[0].id)

    assert installments[0].status == "paid"
    assert installments[0].paid_at is not None
    assert plan.paid_amount == Decimal("100.00")
    assert plan.next_payment_date == date(2026, 3, 16)
    assert service.get_user_credit_info(jane.id).credit_used == Decimal("300.00")

    with pytest.raises(StorefrontError):
        service.pay_installment(installments[0].id)

    for installment in installments[1:]:
        service.pay_installment(installment.id)

    assert plan.status == "completed"
    assert plan.next_payment_date is None
    assert order.payment_status == "paid"
    assert service.get_user_credit_info(jane.id).credit_used == Decimal("0.00")


def test_uneven_plan_releases_exactly_its_principal(session, jane):
    service = PayLaterService(session)
    other = service.create_bnpl_transaction(jane.id, None, 500, installments=1)
    plan = service.create_bnpl_transaction(jane.id, None, 1000, installments=3)

    assert [i.amount for i in plan.installment_rows] == [Decimal("334"), Decimal("334"), Decimal("332.00")]

    for installment in plan.installment_rows:
        service.pay_installment(installment.id)

    assert plan.paid_amount == Decimal("1000.00")
    assert plan.status == "completed"
    # the other plan's 500 is still owed
    assert service.get_user_credit_info(jane.id).credit_used == Decimal("500.00")
    assert other.status == "active"


# ============================================================================
# Cancelled orders
# ============================================================================

def test_cancelling_bnpl_order_releases_credit(session, jane):
    service = PayLaterService(session)
    order = make_order(session, jane, total="750.00", payment_method="bnpl")
    plan = service.create_bnpl_transaction(jane.id, order.id, 750)
    assert service.get_user_credit_info(jane.id).credit_used == Decimal("750.00")

    OrderService(session).cancel_order(order.id, jane.id)

    assert service.get_user_credit_info(jane.id).credit_used == Decimal("0.00")
    assert plan.status == "cancelled"
    assert plan.next_payment_date is None
    assert all(i.status == "cancelled" for i in plan.installment_rows)
    assert order.payment_status == "unpaid"

    # closed plans are never flagged later
    assert service.mark_overdue(now=datetime(2030, 1, 1)) == 0


def test_cancelling_part_paid_bnpl_order_refunds_repayments(session, jane):
    service = PayLaterService(session)
    other = service.create_bnpl_transaction(jane.id, None, 300)
    order = make_order(session, jane, total="400.00", payment_method="bnpl")
    plan = service.create_bnpl_transaction(jane.id, order.id, 400)
    first = service.get_transaction_installments(plan.id)[0]
    service.pay_installment(first.id)

    OrderService(session).cancel_order(order.id)

    assert first.status == "paid"
    assert [i.status for i in plan.installment_rows[1:]] == ["cancelled"] * 3
    assert service.get_user_credit_info(jane.id).credit_used == Decimal("300.00")
    assert WalletService(session).get_balance(jane.id) == Decimal("100.00")
    assert order.payment_status == "refunded"
    assert other.status == "active"

    with pytest.raises(StorefrontError):
        service.pay_installment(plan.installment_rows[1].id)


def test_cancelling_pay_later_order_closes_it(session, jane):
    service = PayLaterService(session)
    order = make_order(session, jane)
    pay_later = service.create_pay_later_order(order, now=datetime(2026, 1, 1, 9, 0))

    OrderService(session).cancel_order(order.id)

    assert pay_later.status == "cancelled"
    assert service.mark_overdue(now=datetime(2026, 3, 1)) == 0
    assert pay_later.status == "cancelled"

    with pytest.raises(StorefrontError):
        service.make_pay_later_payment(pay_later.id, 100)
