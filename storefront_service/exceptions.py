class StorefrontError(Exception):
    pass


class Unauthenticated(StorefrontError):
    pass


class PaymentGatewayError(StorefrontError):
    pass


class PaymentFailed(StorefrontError):
    pass


class DraftMissing(StorefrontError):
    pass


class DuplicatePayment(StorefrontError):
    def __init__(self, payment_authorization_id: str) -> None:
        super().__init__(f"Payment {payment_authorization_id} has already been recorded.")
        self.payment_authorization_id = payment_authorization_id


class CheckoutValidationError(StorefrontError):
    def __init__(self, message: str, missing_fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_fields = missing_fields or []


class ProductNotFound(StorefrontError):
    pass


class InvalidStateTransition(StorefrontError):
    pass
