"""Order and payment status transitions.

Order statuses form one forward-only sequence; CANCELLED can be entered from
anything that is not DELIVERED. A target at or behind the current status is
not an error: the delivery is simply already satisfied. Payment statuses move
PENDING -> SUCCESS|FAILED and SUCCESS -> REFUNDED, nothing else.

plan_transition is pure; the reconciler persists what it returns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from orderflow.core.exceptions import InvalidTransition
from orderflow.models.enums import OrderStatus, PaymentStatus
from orderflow.models.records import OrderRecord
from orderflow.services.normalizer import CanonicalEvent

ORDER_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.CREATED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.PRINTING,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
_RANK = {status: i for i, status in enumerate(ORDER_SEQUENCE)}

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

PAYMENT_EDGES: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED}),
    PaymentStatus.SUCCESS: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class SideEffect(str, Enum):
    ORDER_CONFIRMATION_EMAIL = "order_confirmation_email"
    PAYMENT_SUCCESS_EMAIL = "payment_success_email"
    SHIPPING_EMAIL = "shipping_email"
    CANCELLATION_EMAIL = "cancellation_email"
    QIKINK_SYNC = "qikink_sync"


def can_transition_order(current: OrderStatus, target: OrderStatus) -> bool:
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return _RANK[target] > _RANK[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_EDGES[current]


def payment_sources(target: PaymentStatus) -> list[PaymentStatus]:
    """Statuses a payment may be in for `target` to be a legal next status."""
    return [status for status, edges in PAYMENT_EDGES.items() if target in edges]


@dataclass
class TransitionPlan:
    order_status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    side_effects: list[SideEffect] = field(default_factory=list)

    @property
    def applies(self) -> bool:
        return self.order_status is not None or self.payment_status is not None


def plan_transition(order: OrderRecord, event: CanonicalEvent) -> TransitionPlan:
    """Work out what `event` changes on `order` and which side effects it owes.

    Returns an empty plan when both the order and payment targets are already
    satisfied (regression, repeat, or terminal order).
    """
    plan = TransitionPlan()
    target = event.target_order_status
    if target is not None and can_transition_order(order.order_status, target):
        plan.order_status = target
        plan.changes["order_status"] = target
    target_payment = event.target_payment_status
    if target_payment is not None and can_transition_payment(order.payment_status, target_payment):
        plan.payment_status = target_payment
        plan.changes["payment_status"] = target_payment
    if not plan.applies:
        return plan

    if event.shopify_order_id and not order.shopify_order_id:
        plan.changes["shopify_order_id"] = event.shopify_order_id
    if event.qikink_order_id and not order.qikink_order_id:
        plan.changes["qikink_order_id"] = event.qikink_order_id
    if event.provider == "qikink" and event.vendor_status:
        plan.changes["qikink_status"] = event.vendor_status
    if event.tracking and plan.order_status is not None:
        plan.changes.update(event.tracking.as_changes())
    plan.changes["updated_at"] = datetime.utcnow()

    if plan.order_status == OrderStatus.CONFIRMED:
        plan.side_effects.append(SideEffect.ORDER_CONFIRMATION_EMAIL)
        if event.sync_fulfillment and not order.qikink_order_id:
            plan.side_effects.append(SideEffect.QIKINK_SYNC)
    elif plan.payment_status == PaymentStatus.SUCCESS:
        plan.side_effects.append(SideEffect.PAYMENT_SUCCESS_EMAIL)
    if plan.order_status == OrderStatus.SHIPPED:
        plan.side_effects.append(SideEffect.SHIPPING_EMAIL)
    elif plan.order_status == OrderStatus.CANCELLED:
        plan.side_effects.append(SideEffect.CANCELLATION_EMAIL)
    return plan


def require_transition(order: OrderRecord, event: CanonicalEvent) -> TransitionPlan:
    """plan_transition, raising InvalidTransition when nothing would change."""
    plan = plan_transition(order, event)
    if not plan.applies:
        if event.target_order_status is not None:
            raise InvalidTransition(order.order_status.value, event.target_order_status.value)
        target = event.target_payment_status.value if event.target_payment_status else "-"
        raise InvalidTransition(order.payment_status.value, target)
    return plan


# Customer-facing status helpers

STATUS_DISPLAY = {
    OrderStatus.CREATED: "Order Created",
    OrderStatus.CONFIRMED: "Payment Confirmed",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.PRINTING: "Manufacturing",
    OrderStatus.READY_TO_SHIP: "Ready to Ship",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

ESTIMATED_DELIVERY_DAYS = {
    OrderStatus.CREATED: 10,
    OrderStatus.CONFIRMED: 10,
    OrderStatus.PROCESSING: 7,
    OrderStatus.PRINTING: 5,
    OrderStatus.READY_TO_SHIP: 3,
    OrderStatus.SHIPPED: 2,
    OrderStatus.DELIVERED: 0,
}


def can_cancel(status: OrderStatus) -> bool:
    """Customer cancellation is allowed until the parcel leaves."""
    return status not in (OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def status_summary(order: OrderRecord) -> dict[str, Any]:
    return {
        "order_status": order.order_status.value,
        "payment_status": order.payment_status.value,
        "display": STATUS_DISPLAY[order.order_status],
        "can_cancel": can_cancel(order.order_status),
        "estimated_delivery_days": ESTIMATED_DELIVERY_DAYS.get(order.order_status),
    }
