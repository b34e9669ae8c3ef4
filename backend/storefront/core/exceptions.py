"""
Order engine error taxonomy.

Every rejection raised by the order engine derives from OrderEngineError and
carries a stable machine-readable ``code``, a ``context`` dict with the
details a caller needs, and the HTTP status the API layer maps it to.
"""

from typing import Any, Iterable, Optional


class OrderEngineError(Exception):
    """Base exception for order engine errors."""

    http_status = 500
    default_code = "ORDER_ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# ============================================================================
# Validation
# ============================================================================


class OrderValidationError(OrderEngineError):
    """Malformed request: empty cart, bad quantity, incomplete address."""

    http_status = 400
    default_code = "VALIDATION_ERROR"


# ============================================================================
# Not found
# ============================================================================


class ResourceNotFoundError(OrderEngineError):
    """Referenced entity does not exist or is soft-deleted."""

    http_status = 404
    default_code = "NOT_FOUND"


class ProductNotFoundError(ResourceNotFoundError):
    default_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        super().__init__(
            f"Product not found: {product_id}",
            product_id=product_id,
        )


class OrderNotFoundError(ResourceNotFoundError):
    default_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: Any):
        super().__init__(f"Order not found: {order_id}", order_id=order_id)


class PromoCodeNotFoundError(ResourceNotFoundError):
    default_code = "PROMO_CODE_NOT_FOUND"

    def __init__(self, code: str):
        super().__init__(f"Invalid promo code: {code}", promo_code=code)


# ============================================================================
# Business conflicts
# ============================================================================


class BusinessConflictError(OrderEngineError):
    """Request is well formed but conflicts with current business state."""

    http_status = 409
    default_code = "CONFLICT"


class OutOfStockError(BusinessConflictError):
    """One or more products cannot cover the requested quantity."""

    default_code = "OUT_OF_STOCK"

    def __init__(self, product_names: Iterable[str]):
        names = list(product_names)
        super().__init__(
            f"Some products are out of stock: {', '.join(names)}",
            out_of_stock=names,
        )
        self.product_names = names


class PromoCodeRejectedError(BusinessConflictError):
    """Promo code exists but cannot be applied to this order."""

    default_code = "PROMO_CODE_REJECTED"


class StateTransitionError(BusinessConflictError):
    """Requested order status change is not permitted."""

    default_code = "INVALID_STATUS_TRANSITION"


class PaymentTransitionError(BusinessConflictError):
    """Requested payment status change is not permitted."""

    default_code = "INVALID_PAYMENT_TRANSITION"


class OrderNumberConflictError(BusinessConflictError):
    """Unique order number could not be allocated."""

    default_code = "ORDER_NUMBER_EXHAUSTED"


class DuplicateOrderNumberError(BusinessConflictError):
    """Order insert collided with an existing order number."""

    default_code = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_number: str):
        super().__init__(
            f"Order number already in use: {order_number}",
            order_number=order_number,
        )
        self.order_number = order_number


class BuyerNotEligibleError(BusinessConflictError):
    """Buyer is blocked, inactive or deleted."""

    http_status = 403
    default_code = "BUYER_NOT_ELIGIBLE"


# ============================================================================
# Consistency and infrastructure
# ============================================================================


class ConsistencyError(OrderEngineError):
    """Internal invariant violated; compensation has already been attempted."""

    http_status = 500
    default_code = "CONSISTENCY_ERROR"


class PricingInvariantError(ConsistencyError):
    default_code = "NEGATIVE_FINAL_AMOUNT"


class ReconciliationRequiredError(ConsistencyError):
    """
    Compensation itself failed.

    Stock or promo counters may now disagree with persisted orders and need
    manual reconciliation.
    """

    default_code = "RECONCILIATION_REQUIRED"


class StoreUnavailableError(OrderEngineError):
    """A backing store timed out or failed. Safe to retry."""

    http_status = 503
    default_code = "STORE_UNAVAILABLE"
    retryable = True
