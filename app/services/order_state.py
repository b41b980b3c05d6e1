"""Order state machine.

Pure transition function shared by the webhook reconciler, vendor
fulfillment actions and the pending-order sweep. Nothing here touches the
database; callers persist the returned status themselves.
"""
from __future__ import annotations

from collections.abc import Mapping

from app.models.order import OrderStatus
from app.utils.errors import IllegalTransition

TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Targets vendor staff may request; settlement states belong to the reconciler.
FULFILLMENT_TARGETS = frozenset(
    {
        OrderStatus.PREPARING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }
)


def allowed_targets(current: OrderStatus | str) -> frozenset[OrderStatus]:
    """Return the statuses reachable from ``current`` in one step."""

    return TRANSITIONS[OrderStatus(current)]


def is_terminal(status: OrderStatus | str) -> bool:
    return not TRANSITIONS[OrderStatus(status)]


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in allowed_targets(current)


def transition(current: OrderStatus | str, target: OrderStatus | str) -> OrderStatus:
    """Return ``target`` as the new status or raise ``IllegalTransition``."""

    current_status = OrderStatus(current)
    target_status = OrderStatus(target)
    if target_status not in TRANSITIONS[current_status]:
        raise IllegalTransition(
            f"Cannot move order from {current_status.value} to {target_status.value}.",
            details={"from": current_status.value, "to": target_status.value},
        )
    return target_status


__all__ = [
    "TRANSITIONS",
    "FULFILLMENT_TARGETS",
    "allowed_targets",
    "is_terminal",
    "can_transition",
    "transition",
]
