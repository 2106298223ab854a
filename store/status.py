"""Order status transitions."""

from .exceptions import InvalidState
from .models import Order

Status = Order.Status

# Set directly by staff through the status endpoint.
DIRECT_TRANSITIONS = {
    Status.DRAFT: {Status.COMPLETED, Status.CANCELLED},
}

# Outcomes of the refund flow only.
REFUND_TRANSITIONS = {
    Status.DRAFT: {Status.PARTIALLY_REFUNDED, Status.FULLY_REFUNDED},
    Status.COMPLETED: {Status.PARTIALLY_REFUNDED, Status.FULLY_REFUNDED},
    Status.PARTIALLY_REFUNDED: {Status.PARTIALLY_REFUNDED, Status.FULLY_REFUNDED},
}


def can_set_directly(current, target):
    return target in DIRECT_TRANSITIONS.get(current, set())


def can_refund(current):
    return current in REFUND_TRANSITIONS


def ensure_direct_transition(order, target):
    if target in (Status.PARTIALLY_REFUNDED, Status.FULLY_REFUNDED):
        raise InvalidState(
            f"Order #{order.pk}: '{target}' is only reachable through a refund."
        )
    if order.status == target:
        raise InvalidState(f"Order #{order.pk} is already {order.status}.")
    if not can_set_directly(order.status, target):
        raise InvalidState(
            f"Order #{order.pk} cannot move from {order.status} to {target}; "
            "only draft orders can be completed or cancelled."
        )


def ensure_editable(order):
    if order.status != Status.DRAFT:
        raise InvalidState(
            f"Order #{order.pk} is {order.status}; only draft orders can be edited."
        )


def ensure_refundable(order):
    if not can_refund(order.status):
        raise InvalidState(
            f"Order #{order.pk} is {order.status} and cannot be refunded."
        )


def ensure_refund_transition(order, target):
    if target not in REFUND_TRANSITIONS.get(order.status, set()):
        raise InvalidState(
            f"Order #{order.pk} cannot move from {order.status} to {target}."
        )
