"""Order status, payment status and payment method enums.

This module defines the enums for the order lifecycle together with the
transition tables that the state machine enforces.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> PROCESSING, CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED, RETURNED
    - DELIVERED -> RETURNED
    - CANCELLED -> REFUNDED
    - RETURNED -> REFUNDED
    - REFUNDED -> (terminal state)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Payment status for an order.

    Valid transitions:
    - PENDING -> PAID, FAILED
    - FAILED -> PENDING, PAID (retried payment)
    - PAID -> REFUNDED, PARTIALLY_REFUNDED
    - PARTIALLY_REFUNDED -> REFUNDED
    - REFUNDED -> (terminal state)
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, Enum):
    """Payment methods accepted at checkout."""

    COD = "cod"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    WALLET = "wallet"
    PAYPAL = "paypal"

    @classmethod
    def from_string(cls, value: str) -> "PaymentMethod":
        """Accepts both ``credit_card`` and ``Credit Card`` style spellings."""
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            valid_values = ", ".join([m.value for m in cls])
            raise ValueError(
                f"Unsupported payment method: {value}. "
                f"Valid values are: {valid_values}"
            )


class RefundStatus(str, Enum):
    """Refund intent recorded on cancelled or returned paid orders."""

    PENDING = "pending"
    COMPLETED = "completed"


class CancelledBy(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.RETURNED,
    },
    OrderStatus.DELIVERED: {
        OrderStatus.RETURNED,
    },
    OrderStatus.CANCELLED: {
        OrderStatus.REFUNDED,
    },
    OrderStatus.RETURNED: {
        OrderStatus.REFUNDED,
    },
    OrderStatus.REFUNDED: set(),  # Terminal
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    },
    PaymentStatus.FAILED: {
        PaymentStatus.PENDING,
        PaymentStatus.PAID,
    },
    PaymentStatus.PAID: {
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
    PaymentStatus.PARTIALLY_REFUNDED: {
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.REFUNDED: set(),  # Terminal
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def validate_payment_status_transition(
    current: PaymentStatus, new: PaymentStatus
) -> bool:
    """Validate if payment status transition is allowed."""
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()


def get_allowed_payment_transitions(current: PaymentStatus) -> Set[PaymentStatus]:
    """Get all allowed transitions from current payment status."""
    return PAYMENT_STATUS_TRANSITIONS.get(current, set()).copy()
