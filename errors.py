"""
Domain exceptions raised by the storefront services.

The UI layer catches StorefrontError and shows the message to the user.
"""


class StorefrontError(Exception):
    """Base class for all business-rule failures"""
    pass


class NotFoundError(StorefrontError):
    """Raised when a referenced row does not exist"""
    pass


class InvalidStatusTransition(StorefrontError):
    """Raised when an order status change is not allowed by the lifecycle"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")


class InsufficientStockError(StorefrontError):
    """Raised when one or more products do not have enough stock"""

    def __init__(self, insufficient_items):
        self.insufficient_items = insufficient_items
        ids = ", ".join(str(i.product_id) for i in insufficient_items)
        super().__init__(f"Insufficient stock for items: {ids}")


class InsufficientFundsError(StorefrontError):
    """Raised when a wallet or points balance cannot cover a payment"""
    pass


class PayLaterNotEligibleError(StorefrontError):
    """Raised when a user without approved KYC asks for credit"""
    pass


class InvalidDiscountCodeError(StorefrontError):
    """Raised when a discount code cannot be applied"""
    pass


class BarcodeMismatchError(StorefrontError):
    """Raised when a scanned package barcode does not match the order"""
    pass


class PaymentGatewayError(StorefrontError):
    """Raised when the mobile money gateway rejects a request"""
    pass


class PermissionDeniedError(StorefrontError):
    """Raised when a user's role does not allow an operation"""
    pass


class MapsUnavailableError(StorefrontError):
    """Raised when Google Maps cannot be reached"""
    pass
