"""Error taxonomy for the storefront API."""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StorefrontError):
    """Raised when required fields are missing or malformed."""

    status_code = 400


class EmptyCart(ValidationError):
    """Raised when an order is placed without any line items."""

    def __init__(self):
        super().__init__("No order items")


class NotFound(StorefrontError):
    """Raised when a referenced id does not exist."""

    status_code = 404


class ProductNotFound(NotFound):
    """Raised when a cart line references an unknown product."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class Unauthorized(StorefrontError):
    """Raised when a credential is missing or invalid."""

    status_code = 401


class Forbidden(StorefrontError):
    """Raised when an authenticated user is not entitled to an action."""

    status_code = 403


class Conflict(StorefrontError):
    """Raised on duplicates and on repeated one-shot transitions."""

    status_code = 409


class OutOfStock(StorefrontError):
    """Raised when a product cannot cover the requested quantity."""

    status_code = 400


class InsufficientStock(OutOfStock):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"{product_name} is out of stock")


class WebhookSignatureError(StorefrontError):
    """Raised when a payment provider callback fails verification."""

    status_code = 400

    def __init__(self, reason: str):
        super().__init__(f"Webhook Error: {reason}")


class UpstreamError(StorefrontError):
    """Raised when a call to the payment or identity provider fails."""

    status_code = 502


class InternalError(StorefrontError):
    """Raised on unexpected store failures."""

    status_code = 500
