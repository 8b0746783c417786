"""
Credit products: KYC verification, Pay Later and BNPL installments

Rules:
- Both products need an approved KYC verification
- Pay Later: the full order total is due 30 days after checkout
- BNPL: zero interest, installment = ceil(total / n) with the last one taking
  the remainder, weekly due dates starting 7 days after checkout, limited by
  available credit
- Cancelling an order closes its credit: unpaid principal goes back to the
  credit limit and anything already repaid is refunded to the wallet
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional

from sqlalchemy.orm import Session

from currency import format_currency, quantize_money, to_decimal
from errors import (
    InsufficientFundsError, NotFoundError, PayLaterNotEligibleError, StorefrontError
)
from models import (
    BNPLInstallment, BNPLTransaction, KYCVerification, Order, PayLaterOrder, utcnow
)

logger = logging.getLogger(__name__)

PAY_LATER_TERM_DAYS = 30
BNPL_DEFAULT_INSTALLMENTS = 4
BNPL_INTERVAL_DAYS = 7
BNPL_INTEREST_RATE = Decimal("0")


def installment_schedule(total: Decimal, installments: int) -> List[Decimal]:
    """Whole-shilling installments that add up exactly to total"""
    regular = (total / installments).to_integral_value(rounding=ROUND_CEILING)
    amounts = []
    remaining = total
    for _ in range(installments - 1):
        amount = min(regular, remaining)
        amounts.append(amount)
        remaining -= amount
    amounts.append(quantize_money(remaining))
    return amounts


@dataclass
class CreditInfo:
    credit_limit: Decimal
    credit_used: Decimal
    credit_available: Decimal
    credit_score: Optional[int]
    status: str


class PayLaterService:
    """KYC review plus Pay Later and BNPL bookkeeping"""

    def __init__(self, db_session: Session):
        self.session = db_session

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    def get_kyc_status(self, user_id: int) -> Optional[KYCVerification]:
        return self.session.query(KYCVerification).filter(
            KYCVerification.user_id == user_id
        ).first()

    def submit_kyc_verification(self, user_id: int, id_document_url: str,
                                address_proof_url: str) -> KYCVerification:
        """Submit or resubmit identity documents; the verification goes back to pending"""
        kyc = self.get_kyc_status(user_id)
        if kyc is None:
            kyc = KYCVerification(user_id=user_id)
            self.session.add(kyc)

        kyc.id_document_url = id_document_url
        kyc.address_proof_url = address_proof_url
        kyc.status = "pending"
        self.session.flush()

        logger.info(f"✓ KYC submitted for user {user_id}")
        return kyc

    def is_eligible_for_pay_later(self, user_id: int) -> bool:
        kyc = self.get_kyc_status(user_id)
        return kyc is not None and kyc.status == "approved"

    def list_kyc_verifications(self, status: Optional[str] = None) -> List[KYCVerification]:
        query = self.session.query(KYCVerification)
        if status is not None:
            query = query.filter(KYCVerification.status == status)
        return query.order_by(KYCVerification.created_at, KYCVerification.id).all()

    def review_kyc(
        self,
        user_id: int,
        approve: bool,
        credit_limit=None,
        admin_notes: Optional[str] = None,
        credit_score: Optional[int] = None
    ) -> KYCVerification:
        """Admin decision on a KYC submission"""
        kyc = self.get_kyc_status(user_id)
        if kyc is None:
            raise NotFoundError(f"No KYC verification for user {user_id}")

        kyc.status = "approved" if approve else "rejected"
        kyc.admin_notes = admin_notes
        if credit_score is not None:
            kyc.credit_score = credit_score

        if approve:
            if credit_limit is not None:
                if to_decimal(credit_limit) < 0:
                    raise StorefrontError("Credit limit cannot be negative")
                kyc.credit_limit = quantize_money(credit_limit)
        else:
            kyc.credit_limit = Decimal("0.00")

        self.session.flush()
        logger.info(f"✓ KYC for user {user_id} {kyc.status} (limit {kyc.credit_limit})")
        return kyc

    def _require_eligible(self, user_id: int) -> KYCVerification:
        kyc = self.get_kyc_status(user_id)
        if kyc is None or kyc.status != "approved":
            raise PayLaterNotEligibleError(
                "Not eligible for Pay Later: your identity verification must be approved first"
            )
        return kyc

    def _collect(self, user_id: int, amount: Decimal, payment_method: str, description: str) -> None:
        """Take a repayment; wallet repayments are debited here, others are settled externally"""
        from wallet_service import WalletService

        if payment_method == "wallet":
            WalletService(self.session).pay_using_wallet(user_id, amount, description)

    def _release_credit(self, user_id: int, amount: Decimal) -> None:
        kyc = self.get_kyc_status(user_id)
        if kyc is None or amount <= 0:
            return
        kyc.credit_used = max(
            Decimal("0.00"),
            quantize_money(to_decimal(kyc.credit_used or 0) - amount)
        )

    # ------------------------------------------------------------------
    # Pay Later
    # ------------------------------------------------------------------

    def create_pay_later_order(self, order: Order, now: Optional[datetime] = None) -> PayLaterOrder:
        """
        Defer payment of an order for 30 days.

        Raises:
            PayLaterNotEligibleError: Without an approved KYC
        """
        self._require_eligible(order.user_id)
        now = now or utcnow()

        pay_later = PayLaterOrder(
            order_id=order.id,
            user_id=order.user_id,
            total_amount=quantize_money(order.total),
            paid_amount=Decimal("0.00"),
            due_date=now + timedelta(days=PAY_LATER_TERM_DAYS),
            status="active",
        )
        self.session.add(pay_later)
        self.session.flush()

        logger.info(f"✓ Pay Later for order {order.id} due {pay_later.due_date:%Y-%m-%d}")
        return pay_later

    def get_user_pay_later_orders(self, user_id: int) -> List[PayLaterOrder]:
        return self.session.query(PayLaterOrder).filter(
            PayLaterOrder.user_id == user_id
        ).order_by(PayLaterOrder.created_at.desc(), PayLaterOrder.id.desc()).all()

    def make_pay_later_payment(self, pay_later_id: int, amount,
                               payment_method: str = "mpesa") -> PayLaterOrder:
        """
        Pay towards a Pay Later order; it completes once fully paid.

        Raises:
            StorefrontError: Non-positive amount, overpayment, or order already completed
        """
        pay_later = self.session.get(PayLaterOrder, pay_later_id)
        if pay_later is None:
            raise NotFoundError(f"Pay Later order {pay_later_id} not found")
        if pay_later.status == "completed":
            raise StorefrontError("This Pay Later order is already fully paid")
        if pay_later.status == "cancelled":
            raise StorefrontError("This Pay Later order was cancelled")

        amount = quantize_money(amount)
        outstanding = to_decimal(pay_later.total_amount) - to_decimal(pay_later.paid_amount)
        if amount <= 0:
            raise StorefrontError("Payment amount must be greater than zero")
        if amount > outstanding:
            raise StorefrontError(f"Payment exceeds the outstanding {format_currency(outstanding)}")

        self._collect(pay_later.user_id, amount, payment_method,
                      f"Pay Later payment for order #{pay_later.order_id}")

        pay_later.paid_amount = quantize_money(to_decimal(pay_later.paid_amount) + amount)
        if pay_later.paid_amount >= pay_later.total_amount:
            pay_later.status = "completed"
            order = self.session.get(Order, pay_later.order_id)
            if order is not None:
                order.payment_status = "paid"

        self.session.flush()
        logger.info(f"✓ Pay Later {pay_later_id}: paid {pay_later.paid_amount}/{pay_later.total_amount}")
        return pay_later

    def mark_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Flag Pay Later orders and BNPL installments past their due date.

        Returns:
            Number of rows marked overdue
        """
        now = now or utcnow()
        marked = 0

        late_orders = self.session.query(PayLaterOrder).filter(
            PayLaterOrder.status == "active",
            PayLaterOrder.due_date < now
        ).all()
        for pay_later in late_orders:
            pay_later.status = "overdue"
            marked += 1

        late_installments = self.session.query(BNPLInstallment).filter(
            BNPLInstallment.status == "pending",
            BNPLInstallment.due_date < now.date()
        ).all()
        for installment in late_installments:
            installment.status = "overdue"
            installment.transaction.status = "overdue"
            marked += 1

        self.session.flush()
        if marked:
            logger.warning(f"Marked {marked} credit items overdue")
        return marked

    # ------------------------------------------------------------------
    # BNPL
    # ------------------------------------------------------------------

    def get_user_credit_info(self, user_id: int) -> Optional[CreditInfo]:
        kyc = self.get_kyc_status(user_id)
        if kyc is None:
            return None

        limit = to_decimal(kyc.credit_limit or 0)
        used = to_decimal(kyc.credit_used or 0)
        return CreditInfo(
            credit_limit=quantize_money(limit),
            credit_used=quantize_money(used),
            credit_available=quantize_money(limit - used),
            credit_score=kyc.credit_score,
            status=kyc.status,
        )

    def create_bnpl_transaction(
        self,
        user_id: int,
        order_id: Optional[int],
        amount,
        installments: int = BNPL_DEFAULT_INSTALLMENTS,
        today: Optional[date] = None
    ) -> BNPLTransaction:
        """
        Split an amount into weekly installments.

        Raises:
            PayLaterNotEligibleError: Without an approved KYC
            InsufficientFundsError: If the amount exceeds available credit
        """
        if installments < 1:
            raise StorefrontError("At least one installment is required")

        kyc = self._require_eligible(user_id)
        amount = quantize_money(amount)
        if amount <= 0:
            raise StorefrontError("Amount must be greater than zero")

        available = to_decimal(kyc.credit_limit or 0) - to_decimal(kyc.credit_used or 0)
        if amount > available:
            raise InsufficientFundsError(
                f"Amount {format_currency(amount)} exceeds available credit {format_currency(available)}"
            )

        today = today or utcnow().date()
        total = quantize_money(amount * (1 + BNPL_INTEREST_RATE / 100))
        schedule = installment_schedule(total, installments)
        installment_amount = schedule[0]

        transaction = BNPLTransaction(
            user_id=user_id,
            order_id=order_id,
            principal_amount=amount,
            total_amount=total,
            paid_amount=Decimal("0.00"),
            interest_rate=BNPL_INTEREST_RATE,
            installments=installments,
            installment_amount=installment_amount,
            next_payment_date=today + timedelta(days=BNPL_INTERVAL_DAYS),
            due_date=today + timedelta(days=BNPL_INTERVAL_DAYS * installments),
            status="active",
        )
        for number, amount_due in enumerate(schedule, start=1):
            transaction.installment_rows.append(BNPLInstallment(
                installment_number=number,
                amount=amount_due,
                due_date=today + timedelta(days=BNPL_INTERVAL_DAYS * number),
                status="pending",
            ))

        kyc.credit_used = quantize_money(to_decimal(kyc.credit_used or 0) + amount)

        self.session.add(transaction)
        self.session.flush()

        logger.info(
            f"✓ BNPL for user {user_id}: {installments} × {installment_amount} "
            f"(credit used {kyc.credit_used}/{kyc.credit_limit})"
        )
        return transaction

    def get_user_bnpl_transactions(self, user_id: int) -> List[BNPLTransaction]:
        return self.session.query(BNPLTransaction).filter(
            BNPLTransaction.user_id == user_id
        ).order_by(BNPLTransaction.created_at.desc(), BNPLTransaction.id.desc()).all()

    def get_transaction_installments(self, transaction_id: int) -> List[BNPLInstallment]:
        return self.session.query(BNPLInstallment).filter(
            BNPLInstallment.transaction_id == transaction_id
        ).order_by(BNPLInstallment.installment_number).all()

    def pay_installment(self, installment_id: int, payment_method: str = "mpesa") -> BNPLInstallment:
        """
        Pay one installment. Paid installments release their amount of credit, up to
        the plan's principal; the transaction completes once its total is covered.
        """
        installment = self.session.get(BNPLInstallment, installment_id)
        if installment is None:
            raise NotFoundError(f"Installment {installment_id} not found")
        if installment.status not in ("pending", "overdue"):
            raise StorefrontError(f"Installment {installment_id} is already {installment.status}")

        transaction = installment.transaction
        self._collect(
            transaction.user_id, to_decimal(installment.amount), payment_method,
            f"BNPL installment {installment.installment_number}/{transaction.installments}"
        )

        installment.status = "paid"
        installment.paid_at = utcnow()
        installment.payment_method = payment_method

        principal = to_decimal(transaction.principal_amount)
        paid_before = to_decimal(transaction.paid_amount or 0)
        transaction.paid_amount = quantize_money(paid_before + to_decimal(installment.amount))

        # credit is only held against principal, never interest
        released = min(transaction.paid_amount, principal) - min(paid_before, principal)
        self._release_credit(transaction.user_id, released)

        remaining = [
            row for row in transaction.installment_rows
            if row.status in ("pending", "overdue")
        ]
        if transaction.paid_amount >= transaction.total_amount or not remaining:
            transaction.status = "completed"
            transaction.next_payment_date = None
            if transaction.order_id is not None:
                order = self.session.get(Order, transaction.order_id)
                if order is not None:
                    order.payment_status = "paid"
        else:
            transaction.next_payment_date = min(row.due_date for row in remaining)
            if not any(row.status == "overdue" for row in remaining):
                transaction.status = "active"

        self.session.flush()
        logger.info(
            f"✓ Paid installment {installment.installment_number} of BNPL {transaction.id} "
            f"({transaction.paid_amount}/{transaction.total_amount})"
        )
        return installment

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_order_credit(self, order_id: int) -> Decimal:
        """
        Close the Pay Later and BNPL records of a cancelled order.

        Unpaid BNPL principal goes back to the customer's available credit and
        repayments already made are refunded to the wallet.

        Returns:
            Amount refunded to the wallet
        """
        from wallet_service import WalletService

        refunded = Decimal("0.00")
        open_statuses = ("active", "overdue")

        pay_later_orders = self.session.query(PayLaterOrder).filter(
            PayLaterOrder.order_id == order_id,
            PayLaterOrder.status.in_(open_statuses)
        ).all()
        for pay_later in pay_later_orders:
            pay_later.status = "cancelled"
            refunded += to_decimal(pay_later.paid_amount or 0)

        plans = self.session.query(BNPLTransaction).filter(
            BNPLTransaction.order_id == order_id,
            BNPLTransaction.status.in_(open_statuses)
        ).all()
        for plan in plans:
            for installment in plan.installment_rows:
                if installment.status in ("pending", "overdue"):
                    installment.status = "cancelled"

            paid = to_decimal(plan.paid_amount or 0)
            principal = to_decimal(plan.principal_amount)
            self._release_credit(plan.user_id, principal - min(paid, principal))

            plan.status = "cancelled"
            plan.next_payment_date = None
            refunded += paid

        if refunded > 0:
            user_id = (pay_later_orders or plans)[0].user_id
            WalletService(self.session).refund_to_wallet(
                user_id, refunded, f"Refund of credit repayments for cancelled order #{order_id}"
            )

        self.session.flush()
        if pay_later_orders or plans:
            logger.info(
                f"✓ Closed {len(pay_later_orders)} Pay Later and {len(plans)} BNPL records "
                f"for cancelled order {order_id} (refunded {refunded})"
            )
        return quantize_money(refunded)
