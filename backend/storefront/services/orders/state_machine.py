"""Order lifecycle state machine.

OrderLifecycle validates order status transitions against the transition
table, runs per-transition guards and side effects, and appends exactly one
status history entry for every accepted change. Payment status changes go
through ``apply_payment_status``, which owns the coupling between payment
state and order state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from storefront.core.config import Settings
from storefront.core.exceptions import PaymentTransitionError, StateTransitionError
from storefront.core.logging import get_logger
from storefront.database.base import utc_now
from storefront.database.models import Order
from storefront.services.orders.enums import (
    CancelledBy,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    get_allowed_order_transitions,
    get_allowed_payment_transitions,
    validate_order_status_transition,
    validate_payment_status_transition,
)
from storefront.services.orders.inventory import InventoryLedger

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class TransitionContext:
    """Caller-supplied data for a transition."""

    actor_id: Optional[str] = None
    note: Optional[str] = None
    reason: Optional[str] = None
    cancelled_by: CancelledBy = CancelledBy.ADMIN
    tracking_id: Optional[str] = None
    tracking_url: Optional[str] = None
    delivery_partner: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_details: Dict[str, Any] = field(default_factory=dict)


Guard = Callable[[Order, TransitionContext], None]
SideEffect = Callable[[Order, TransitionContext, datetime], Awaitable[None]]


class OrderLifecycle:
    """State machine for order and payment status.

    Guards raise StateTransitionError when a precondition is unmet. Side
    effects run before the status field changes, so a failing side effect
    leaves the order's status and history untouched.
    """

    def __init__(
        self,
        ledger: InventoryLedger,
        estimated_delivery_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger
        self.estimated_delivery_days = estimated_delivery_days
        self.clock = clock
        self._transition_guards: Dict[tuple[OrderStatus, OrderStatus], Guard] = (
            self._initialize_guards()
        )
        self._side_effects: Dict[OrderStatus, SideEffect] = self._initialize_side_effects()

    def _initialize_guards(self) -> Dict[tuple[OrderStatus, OrderStatus], Guard]:
        return {
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED): self._guard_tracking_present,
        }

    def _initialize_side_effects(self) -> Dict[OrderStatus, SideEffect]:
        return {
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.RETURNED: self._effect_returned,
            OrderStatus.REFUNDED: self._effect_refunded,
        }

    def validate_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        context: TransitionContext,
    ) -> None:
        """
        Raises:
            StateTransitionError: If the order is deleted, the transition is
                not in the table, or a guard rejects it
        """
        self._ensure_mutable(order)
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Cannot change order status from {current_status.value} "
                f"to {target_status.value}",
                order_id=str(order.id),
                current_status=current_status.value,
                target_status=target_status.value,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None:
            guard(order, context)

    async def transition(
        self,
        order: Order,
        target_status: OrderStatus,
        context: Optional[TransitionContext] = None,
    ) -> Order:
        """Move an order to ``target_status``, applying side effects and history."""
        context = context or TransitionContext()
        self.validate_transition(order, target_status, context)

        now = self.clock()
        previous_status = order.status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            await side_effect(order, context, now)

        order.status = target_status
        order.add_history(
            target_status,
            note=context.note or f"Status updated to {target_status.value}",
            changed_by=context.actor_id,
            at=now,
        )

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{previous_status.value}->{target_status.value}",
            actor_id=context.actor_id,
        )
        return order

    async def apply_payment_status(
        self,
        order: Order,
        new_status: PaymentStatus,
        context: Optional[TransitionContext] = None,
    ) -> Order:
        """
        Change payment status and apply its effect on the order.

        - paid while pending: order moves to processing
        - failed while pending: order is cancelled by the system and its
          stock is released
        - refunded while cancelled or returned: refund details are recorded

        Raises:
            PaymentTransitionError: If the payment transition is not allowed
        """
        context = context or TransitionContext()
        self._ensure_mutable(order)

        current_payment = order.payment_status
        if not validate_payment_status_transition(current_payment, new_status):
            allowed = get_allowed_payment_transitions(current_payment)
            raise PaymentTransitionError(
                f"Cannot change payment status from {current_payment.value} "
                f"to {new_status.value}",
                order_id=str(order.id),
                current_status=current_payment.value,
                target_status=new_status.value,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        now = self.clock()

        if new_status == PaymentStatus.PAID and order.status == OrderStatus.PENDING:
            await self.transition(
                order,
                OrderStatus.PROCESSING,
                replace(
                    context,
                    actor_id=context.actor_id or SYSTEM_ACTOR,
                    note=context.note or "Payment received",
                ),
            )
        elif new_status == PaymentStatus.FAILED and order.status == OrderStatus.PENDING:
            await self.transition(
                order,
                OrderStatus.CANCELLED,
                replace(
                    context,
                    actor_id=context.actor_id or SYSTEM_ACTOR,
                    note=context.note or "Payment failed",
                    reason=context.reason or "Payment failed",
                    cancelled_by=CancelledBy.SYSTEM,
                ),
            )
        elif new_status == PaymentStatus.REFUNDED and order.status in (
            OrderStatus.CANCELLED,
            OrderStatus.RETURNED,
        ):
            order.refund_details = {
                "refunded_at": now.isoformat(),
                "refund_amount": str(order.final_amount),
                "transaction_id": context.transaction_id,
            }
            order.refund_status = RefundStatus.COMPLETED

        details = dict(order.payment_details or {})
        details.update(context.payment_details)
        if context.transaction_id:
            details["transaction_id"] = context.transaction_id
        details["updated_at"] = now.isoformat()
        order.payment_details = details
        order.payment_status = new_status

        logger.info(
            "Payment status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{current_payment.value}->{new_status.value}",
            order_status=order.status.value,
        )
        return order

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        return get_allowed_order_transitions(order.status)

    @staticmethod
    def _ensure_mutable(order: Order) -> None:
        if order.is_deleted:
            raise StateTransitionError(
                "Deleted orders cannot be modified",
                code="ORDER_DELETED",
                order_id=str(order.id),
            )

    # Transition Guards

    def _guard_tracking_present(self, order: Order, context: TransitionContext) -> None:
        if not (context.tracking_id and context.tracking_id.strip()):
            raise StateTransitionError(
                "Tracking ID is required to ship an order",
                code="TRACKING_ID_REQUIRED",
                order_id=str(order.id),
            )

    # Side Effects

    async def _effect_shipped(
        self, order: Order, context: TransitionContext, now: datetime
    ) -> None:
        order.tracking_info = {
            "tracking_id": context.tracking_id.strip(),
            "tracking_url": context.tracking_url,
            "delivery_partner": context.delivery_partner,
            "shipped_at": now.isoformat(),
        }
        order.estimated_delivery = now + timedelta(days=self.estimated_delivery_days)

    async def _effect_delivered(
        self, order: Order, context: TransitionContext, now: datetime
    ) -> None:
        order.delivered_at = now

    async def _effect_cancelled(
        self, order: Order, context: TransitionContext, now: datetime
    ) -> None:
        # Stock goes back first; a failed release leaves the order as it was
        await self.ledger.release(order.items)

        order.cancel_details = {
            "cancelled_at": now.isoformat(),
            "reason": context.reason,
            "cancelled_by": context.cancelled_by.value,
        }
        if order.payment_status == PaymentStatus.PAID:
            order.refund_status = RefundStatus.PENDING

    async def _effect_returned(
        self, order: Order, context: TransitionContext, now: datetime
    ) -> None:
        order.returned_at = now
        order.return_reason = context.reason

    async def _effect_refunded(
        self, order: Order, context: TransitionContext, now: datetime
    ) -> None:
        order.refunded_at = now


def get_order_lifecycle(
    ledger: InventoryLedger,
    settings: Settings,
    clock: Callable[[], datetime] = utc_now,
) -> OrderLifecycle:
    return OrderLifecycle(
        ledger=ledger,
        estimated_delivery_days=settings.estimated_delivery_days,
        clock=clock,
    )
