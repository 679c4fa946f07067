"""
Order Service Exceptions

Every error the order core raises carries the HTTP status the API layer
answers with. Broadcast failures are the exception to the rule: they are
logged by the broadcaster and never reach a caller.
"""

from typing import Optional


class OrderServiceError(Exception):
    """Base class for order core errors."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(OrderServiceError):
    """Malformed or incomplete submission."""
    status_code = 400


class MissingRestaurant(ValidationError):
    def __init__(self, message: str = "restaurantId is required"):
        super().__init__(message)


class OrderNotFound(OrderServiceError):
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvalidStatus(OrderServiceError):
    status_code = 400

    def __init__(self, requested: object):
        super().__init__("Invalid status", detail=f"Unknown status: {requested!r}")
        self.requested = requested


class TerminalStateViolation(OrderServiceError):
    """The order is complete or cancelled and cannot move any more."""
    status_code = 400

    def __init__(self, order_id: Optional[str], current: str, requested: str):
        super().__init__(
            f"Order is already {current} and cannot be changed",
            detail=f"Rejected transition {current} -> {requested}",
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested


class PersistenceFailure(OrderServiceError):
    """Storage layer unavailable; the caller may retry."""
    status_code = 500


class OrderCreationFailed(PersistenceFailure):
    def __init__(self, detail: Optional[str] = None):
        super().__init__("Failed to place order", detail=detail)


class BroadcastFailure(OrderServiceError):
    """Event delivery failed after a successful write. Logged only."""


class NotAuthorized(OrderServiceError):
    """Owner token missing or wrong for the restaurant."""
    status_code = 401

    def __init__(self, message: str = "Not authorized for this restaurant"):
        super().__init__(message)
