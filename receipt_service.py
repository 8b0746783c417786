"""
Order receipts

A receipt row is saved per order and an HTML copy is POSTed to the email
function. Email failures are logged and never fail the order.
"""

import html
import logging
import random
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import requests
from sqlalchemy.orm import Session

from config import StorefrontConfig
from currency import format_currency
from errors import NotFoundError
from models import Order, Profile, Receipt, utcnow

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS = {
    "wallet": "Wallet",
    "mpesa": "M-Pesa",
    "cod": "Cash on Delivery",
    "pay_later": "Pay Later",
    "bnpl": "Buy Now, Pay Later",
}


def generate_receipt_number(now_ms: Optional[int] = None) -> str:
    """RCP-<millisecond timestamp>-<4 random characters>"""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"RCP-{now_ms}-{suffix}"


@dataclass
class ReceiptLine:
    name: str
    quantity: int
    price: Decimal
    total: Decimal


@dataclass
class ReceiptData:
    """Everything printed on a receipt"""
    order_id: int
    receipt_number: str
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    items: List[ReceiptLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    payment_method: str = ""
    delivery_address: str = ""
    issued_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> Dict:
        """JSON-safe dict sent alongside the email"""
        data = asdict(self)
        for key in ("subtotal", "delivery_fee", "discount", "total"):
            data[key] = str(data[key])
        for line in data["items"]:
            line["price"] = str(line["price"])
            line["total"] = str(line["total"])
        data["issued_at"] = self.issued_at.isoformat()
        return data


def format_address(address: Optional[Dict]) -> str:
    if not address:
        return "N/A"
    parts = [address.get("street"), address.get("city"), address.get("postal_code")]
    return ", ".join(p for p in parts if p) or "N/A"


def generate_receipt_html(receipt: ReceiptData, store_name: str = "FreshCart") -> str:
    rows = "".join(
        f"<tr><td>{html.escape(line.name)}</td><td>{line.quantity}</td>"
        f"<td class=\"amount\">{format_currency(line.price)}</td>"
        f"<td class=\"amount\">{format_currency(line.total)}</td></tr>"
        for line in receipt.items
    )
    discount_row = ""
    if receipt.discount:
        discount_row = (
            f"<div class=\"total-row discount\"><span>Discount:</span>"
            f"<span>-{format_currency(receipt.discount)}</span></div>"
        )
    phone = f"<div>{html.escape(receipt.customer_phone)}</div>" if receipt.customer_phone else ""

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Receipt {receipt.receipt_number}</title>
  <style>
    body {{ font-family: 'Segoe UI', Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ text-align: center; background: #10b981; color: white; padding: 30px 20px; }}
    .items-table {{ width: 100%; border-collapse: collapse; margin: 25px 0; }}
    .items-table td, .items-table th {{ padding: 10px 0; border-bottom: 1px solid #f1f5f9; }}
    .amount {{ text-align: right; }}
    .total-row {{ display: flex; justify-content: space-between; padding: 6px 0; }}
    .total-row.discount {{ color: #10b981; }}
    .total-row.final {{ font-weight: bold; font-size: 18px; border-top: 2px solid #10b981; }}
  </style>
</head>
<body>
  <div class="header">
    <h1>{html.escape(store_name)}</h1>
    <div>Fresh Groceries Delivered to Your Doorstep</div>
    <strong>RECEIPT</strong>
  </div>
  <p>Receipt Number: <strong>{receipt.receipt_number}</strong><br>
     Order: #{receipt.order_id}<br>
     Date: {receipt.issued_at.strftime('%A, %d %B %Y')}<br>
     Payment Method: {html.escape(receipt.payment_method)}</p>
  <div>
    <strong>{html.escape(receipt.customer_name)}</strong>
    <div>{html.escape(receipt.customer_email)}</div>
    {phone}
    <div>{html.escape(receipt.delivery_address)}</div>
  </div>
  <table class="items-table">
    <thead><tr><th>Item</th><th>Qty</th><th class="amount">Price</th><th class="amount">Total</th></tr></thead>
    <tbody>{rows}</tbody>
  </table>
  <div class="total-row"><span>Subtotal:</span><span>{format_currency(receipt.subtotal)}</span></div>
  <div class="total-row"><span>Delivery Fee:</span><span>{format_currency(receipt.delivery_fee)}</span></div>
  {discount_row}
  <div class="total-row final"><span>Total Paid:</span><span>{format_currency(receipt.total)}</span></div>
  <p>Thank you for shopping with {html.escape(store_name)}!</p>
</body>
</html>
"""


class ReceiptService:
    """Builds, stores and emails order receipts"""

    TIMEOUT = 10  # seconds

    def __init__(self, db_session: Session, function_url: Optional[str] = None,
                 function_token: Optional[str] = None):
        self.session = db_session
        self.function_url = function_url or StorefrontConfig.RECEIPT_FUNCTION_URL
        self.function_token = function_token or StorefrontConfig.RECEIPT_FUNCTION_TOKEN

    def _build(self, order: Order, receipt_number: str, issued_at: datetime,
               email: Optional[str] = None) -> ReceiptData:
        profile = self.session.get(Profile, order.user_id)
        return ReceiptData(
            order_id=order.id,
            receipt_number=receipt_number,
            customer_name=profile.full_name if profile else "Customer",
            customer_email=email or (profile.email if profile else "N/A"),
            customer_phone=profile.phone if profile else None,
            items=[
                ReceiptLine(
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price,
                    total=item.line_total,
                )
                for item in order.items
            ],
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            discount=order.discount or Decimal("0"),
            total=order.total,
            payment_method=PAYMENT_METHOD_LABELS.get(order.payment_method, order.payment_method),
            delivery_address=format_address(order.delivery_address),
            issued_at=issued_at,
        )

    def generate_receipt(self, order_id: int, send_email: bool = True) -> ReceiptData:
        """
        Create the receipt for an order and email it.

        Returns:
            ReceiptData for display
        """
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        receipt = self._build(order, generate_receipt_number(), utcnow())

        row = Receipt(
            order_id=order.id,
            user_id=order.user_id,
            receipt_number=receipt.receipt_number,
            total_amount=receipt.total,
            email_sent_to=receipt.customer_email,
        )
        self.session.add(row)
        self.session.flush()

        if send_email and self.send_receipt_email(receipt):
            row.sent_at = utcnow()
            self.session.flush()

        logger.info(f"✓ Generated receipt {receipt.receipt_number} for order {order_id}")
        return receipt

    def send_receipt_email(self, receipt: ReceiptData) -> bool:
        """
        POST the receipt to the email function.

        Returns:
            True if the function accepted it; failures are logged, not raised
        """
        if not self.function_url:
            logger.warning("RECEIPT_FUNCTION_URL not configured, skipping receipt email")
            return False

        headers = {"Content-Type": "application/json"}
        if self.function_token:
            headers["Authorization"] = f"Bearer {self.function_token}"

        try:
            response = requests.post(
                self.function_url,
                json={
                    "to": receipt.customer_email,
                    "subject": f"Your FreshCart Receipt - Order #{receipt.order_id}",
                    "html": generate_receipt_html(receipt, StorefrontConfig.STORE_NAME),
                    "receipt": receipt.to_payload(),
                },
                headers=headers,
                timeout=self.TIMEOUT
            )
            response.raise_for_status()
            logger.info(f"✓ Receipt {receipt.receipt_number} sent to {receipt.customer_email}")
            return True

        except requests.exceptions.RequestException as e:
            logger.error(f"Error sending receipt email: {e}")
            return False

    def get_order_receipt(self, order_id: int) -> Optional[Receipt]:
        return self.session.query(Receipt).filter(Receipt.order_id == order_id).first()

    def get_receipt_for_order(self, order_id: int) -> Optional[ReceiptData]:
        row = self.get_order_receipt(order_id)
        if row is None:
            return None

        order = self.session.get(Order, order_id)
        if order is None:
            return None

        return self._build(order, row.receipt_number, row.created_at, email=row.email_sent_to)

    def resend_receipt(self, order_id: int) -> bool:
        receipt = self.get_receipt_for_order(order_id)
        if receipt is None:
            raise NotFoundError(f"Receipt for order {order_id} not found")

        sent = self.send_receipt_email(receipt)
        if sent:
            self.get_order_receipt(order_id).sent_at = utcnow()
            self.session.flush()
        return sent

    def auto_generate_receipt(self, order_id: int) -> ReceiptData:
        """Return the existing receipt for an order, or generate one"""
        existing = self.get_receipt_for_order(order_id)
        if existing is not None:
            logger.info(f"Receipt already exists for order {order_id}")
            return existing
        return self.generate_receipt(order_id)
