"""
M-Pesa STK push through the Lipana payment gateway

The customer gets a payment prompt on their phone; the outcome arrives
later on the payment webhook (see payment_webhook.py).

Rules:
- Phone numbers are sent as +254XXXXXXXXX
- Minimum transaction amount is KSh 10
- Amounts are sent as whole shillings
"""

import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP
from typing import Optional

import requests

from config import StorefrontConfig
from currency import to_decimal
from errors import PaymentGatewayError

logger = logging.getLogger(__name__)

MIN_MPESA_AMOUNT = 10


@dataclass
class STKPushResult:
    """Accepted STK push request"""
    transaction_id: Optional[str]
    checkout_request_id: Optional[str]
    status: Optional[str]
    message: str


def format_phone_number(phone: str) -> str:
    """
    Normalize a Kenyan phone number to +254 format.

    Examples:
    - "0712 345 678" → "+254712345678"
    - "254712345678" → "+254712345678"
    - "712345678" → "+254712345678"
    """
    formatted = re.sub(r"[\s\-()]", "", phone or "").lstrip("+")

    if formatted.startswith("0"):
        formatted = "254" + formatted[1:]
    elif not formatted.startswith("254"):
        formatted = "254" + formatted

    return f"+{formatted}"


class MpesaClient:
    """Client for the Lipana STK push API"""

    TIMEOUT = 15  # seconds
    STK_PUSH_PATH = "/transactions/push-stk"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        """
        Initialize the gateway client.

        Args:
            api_key: Lipana secret key (defaults to LIPANA_SECRET_KEY)
            base_url: Gateway base URL (defaults to LIPANA_BASE_URL)
        """
        self.api_key = api_key or StorefrontConfig.LIPANA_SECRET_KEY
        self.base_url = (base_url or StorefrontConfig.LIPANA_BASE_URL).rstrip("/")
        logger.info("MpesaClient initialized")

    def initiate_stk_push(self, phone: str, amount, order_id: Optional[int] = None) -> STKPushResult:
        """
        Ask the gateway to send a payment prompt to the customer's phone.

        Args:
            phone: Customer phone number in any common Kenyan format
            amount: Amount in KSh (rounded to whole shillings)
            order_id: Order being paid, for logging

        Returns:
            STKPushResult with the gateway transaction reference

        Raises:
            PaymentGatewayError: Missing configuration, invalid input, or gateway failure
        """
        if not self.api_key:
            logger.error("LIPANA_SECRET_KEY not configured")
            raise PaymentGatewayError("Payment service not configured")

        if not phone or amount is None:
            raise PaymentGatewayError("Phone and amount are required")

        if to_decimal(amount) < MIN_MPESA_AMOUNT:
            raise PaymentGatewayError(f"Minimum transaction amount is KSh {MIN_MPESA_AMOUNT}")

        payload = {
            "phone": format_phone_number(phone),
            "amount": int(to_decimal(amount).quantize(to_decimal(1), rounding=ROUND_HALF_UP)),
        }

        logger.info(f"Initiating STK push for order {order_id}: {payload['amount']} to {payload['phone']}")

        try:
            response = requests.post(
                f"{self.base_url}{self.STK_PUSH_PATH}",
                json=payload,
                headers={
                    "x-api-key": self.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.TIMEOUT
            )
            response.raise_for_status()
            body = response.json()

        except requests.exceptions.Timeout:
            logger.error(f"STK push timed out for order {order_id}")
            raise PaymentGatewayError("Payment gateway timed out. Please try again.")

        except requests.exceptions.HTTPError as e:
            message = "Failed to initiate payment"
            try:
                message = e.response.json().get("message") or message
            except ValueError:
                pass
            logger.error(f"Lipana API error ({e.response.status_code}): {message}")
            raise PaymentGatewayError(message)

        except requests.exceptions.RequestException as e:
            logger.error(f"STK push request failed: {e}")
            raise PaymentGatewayError("Could not reach the payment gateway")

        except ValueError as e:
            logger.error(f"Invalid JSON from payment gateway: {e}")
            raise PaymentGatewayError("Invalid response from the payment gateway")

        data = body.get("data") or {}
        result = STKPushResult(
            transaction_id=data.get("transactionId"),
            checkout_request_id=data.get("checkoutRequestID"),
            status=data.get("status"),
            message="STK push initiated successfully. Please check your phone to complete payment.",
        )

        logger.info(f"✓ STK push accepted: {result.transaction_id}")
        return result
