"""
Prepaid wallet

Every balance change writes a signed WalletTransaction row; the balance
never goes below zero.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from currency import format_currency, quantize_money, to_decimal
from errors import InsufficientFundsError, NotFoundError, StorefrontError
from models import Profile, Wallet, WalletTransaction

logger = logging.getLogger(__name__)


class WalletService:
    """Wallet balance and transaction history for a user"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def get_wallet(self, user_id: int) -> Optional[Wallet]:
        return self.session.query(Wallet).filter(Wallet.user_id == user_id).first()

    def create_wallet_if_not_exist(self, user_id: int) -> Wallet:
        wallet = self.get_wallet(user_id)
        if wallet is not None:
            return wallet

        if self.session.get(Profile, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        self.session.add(wallet)
        self.session.flush()

        logger.info(f"✓ Created wallet for user {user_id}")
        return wallet

    def get_balance(self, user_id: int) -> Decimal:
        wallet = self.get_wallet(user_id)
        return quantize_money(wallet.balance) if wallet else Decimal("0.00")

    def _record(self, wallet: Wallet, amount: Decimal, transaction_type: str,
                description: str) -> WalletTransaction:
        wallet.balance = quantize_money(to_decimal(wallet.balance) + amount)
        transaction = WalletTransaction(
            wallet_id=wallet.id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
        )
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def add_funds(self, user_id: int, amount, description: str = "Added funds to wallet") -> WalletTransaction:
        """
        Deposit money into a user's wallet.

        Raises:
            StorefrontError: If the amount is not positive
        """
        amount = quantize_money(amount)
        if amount <= 0:
            raise StorefrontError("Amount must be greater than zero")

        wallet = self.create_wallet_if_not_exist(user_id)
        transaction = self._record(wallet, amount, "deposit", description)

        logger.info(f"✓ Added {format_currency(amount)} to wallet of user {user_id}")
        return transaction

    def pay_using_wallet(self, user_id: int, amount, description: str) -> WalletTransaction:
        """
        Debit a payment from the wallet.

        Raises:
            InsufficientFundsError: If the wallet balance is lower than the amount
        """
        amount = quantize_money(amount)
        if amount <= 0:
            raise StorefrontError("Amount must be greater than zero")

        wallet = self.get_wallet(user_id)
        if wallet is None or to_decimal(wallet.balance) < amount:
            balance = wallet.balance if wallet else 0
            raise InsufficientFundsError(
                f"Insufficient wallet balance: {format_currency(balance)} available, "
                f"{format_currency(amount)} needed"
            )

        transaction = self._record(wallet, -amount, "payment", description)

        logger.info(f"✓ Paid {format_currency(amount)} from wallet of user {user_id}")
        return transaction

    def refund_to_wallet(self, user_id: int, amount, description: str) -> WalletTransaction:
        amount = quantize_money(amount)
        if amount <= 0:
            raise StorefrontError("Refund amount must be greater than zero")

        wallet = self.create_wallet_if_not_exist(user_id)
        transaction = self._record(wallet, amount, "refund", description)

        logger.info(f"✓ Refunded {format_currency(amount)} to wallet of user {user_id}")
        return transaction

    def credit_loyalty_redemption(self, user_id: int, amount, points: int) -> WalletTransaction:
        amount = quantize_money(amount)
        wallet = self.create_wallet_if_not_exist(user_id)
        return self._record(
            wallet, amount, "loyalty_redemption",
            f"Redeemed {points} loyalty points"
        )

    def get_wallet_transactions(self, user_id: int) -> List[WalletTransaction]:
        """Newest first"""
        wallet = self.get_wallet(user_id)
        if wallet is None:
            return []

        return self.session.query(WalletTransaction).filter(
            WalletTransaction.wallet_id == wallet.id
        ).order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).all()
