"""Checkout error taxonomy.

Services raise these; routers translate them into HTTP responses using
``status_code``.
"""


class CheckoutError(Exception):
    """Base class for checkout workflow failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(CheckoutError):
    status_code = 400


class InsufficientStock(ValidationError):
    """Advisory stock check failed while opening a checkout session."""


class PaymentNotCompleted(ValidationError):
    """Gateway does not report a successful payment for the order."""

    def __init__(self, message: str = "Payment not completed", payment_status: str = None):
        super().__init__(message)
        self.payment_status = payment_status


class InvalidStatusTransition(ValidationError):
    pass


class NotFoundError(CheckoutError):
    status_code = 404


class ProductNotFound(NotFoundError):
    # A bad product reference in a cart is a client input problem.
    status_code = 400


class OrderNotFound(NotFoundError):
    pass


class SessionExpiredError(CheckoutError):
    status_code = 400

    def __init__(self, message: str = "Order data not found. Session may have expired, please retry checkout."):
        super().__init__(message)


class StockConflict(CheckoutError):
    """Stock ran out between opening the session and materializing the order."""

    status_code = 409

    def __init__(self, message: str, product_id: int = None):
        super().__init__(message)
        self.product_id = product_id


class AuthorizationError(CheckoutError):
    status_code = 403


class GatewayError(CheckoutError):
    """Upstream payment or shipping provider failure."""

    status_code = 502


class WebhookSignatureError(CheckoutError):
    status_code = 401
