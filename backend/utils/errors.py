from fastapi import HTTPException, status


class MarketplaceError(HTTPException):
    """
    Base for errors raised by the marketplace core.
    Rendered by FastAPI as {"detail": {"error": ..., "message": ..., ...}}.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "marketplace_error"

    def __init__(self, message: str, **extra):
        self.message = message
        self.extra = {k: v for k, v in extra.items() if v is not None}
        super().__init__(
            status_code=self.status_code,
            detail={"error": self.error_code, "message": message, **self.extra},
        )


class ValidationError(MarketplaceError):
    error_code = "validation_error"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, field=field)


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "conflict"

    def __init__(self, message: str, item_id=None, title: str | None = None):
        self.item_id = str(item_id) if item_id is not None else None
        super().__init__(message, item_id=self.item_id, title=title)


class SelfPurchaseError(MarketplaceError):
    error_code = "self_purchase"

    def __init__(self, item_id, title: str | None = None):
        self.item_id = str(item_id)
        super().__init__(
            f'Cannot buy your own item "{title}"' if title else "Cannot buy your own item",
            item_id=self.item_id,
        )


class InvalidOperationError(MarketplaceError):
    error_code = "invalid_operation"


class InsufficientPointsError(MarketplaceError):
    error_code = "insufficient_points"

    def __init__(self, available: int, requested: int):
        super().__init__(
            "Not enough loyalty points",
            available=available,
            requested=requested,
        )


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"

    def __init__(self, resource: str, message: str | None = None):
        self.resource = resource
        super().__init__(message or f"{resource.capitalize()} not found", resource=resource)


class PaymentFailedError(MarketplaceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    error_code = "payment_failed"
