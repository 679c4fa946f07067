"""
Order Lifecycle Engine

Legal status transitions for an order:

    pending -> process -> ready | billed -> complete
    any non-terminal status -> cancelled

Staff may move an order freely between the non-terminal states to correct
mistakes (process -> pending is fine). ``complete`` and ``cancelled`` are
terminal: nothing moves out of them.

Everything here is pure. Persisting the result and announcing it is the
caller's job.
"""

from typing import Any, Optional

from qrmenu.exceptions import InvalidStatus, TerminalStateViolation
from qrmenu.models import OrderStatus


def parse_status(value: Any) -> OrderStatus:
    """
    Resolve a requested status to an ``OrderStatus``.

    Raises:
        InvalidStatus: value is not one of the fixed set
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise InvalidStatus(value)
    try:
        return OrderStatus(value.strip().lower())
    except ValueError:
        raise InvalidStatus(value) from None


def resolve_transition(
    current: OrderStatus,
    requested: Any,
    order_id: Optional[str] = None,
) -> OrderStatus:
    """
    Decide the status an order moves to.

    Raises:
        InvalidStatus: requested status is unknown
        TerminalStateViolation: the order is already complete or cancelled
    """
    target = parse_status(requested)
    if current.is_terminal:
        raise TerminalStateViolation(order_id, current.value, target.value)
    return target


def apply_transition(order, requested: Any):
    """Set ``order.status`` to the requested status if the move is legal."""
    order.status = resolve_transition(order.status, requested, order_id=order.id)
    return order
