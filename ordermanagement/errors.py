class OrderError(Exception):
    """Base class for every error raised by the order pipeline."""


class ValidationError(OrderError):
    """Create/update input was rejected. Rendered as 400."""


class NotFoundError(OrderError):
    """The referenced order does not exist. Rendered as 404."""

    def __init__(self, order_id):
        super().__init__(f"Order with id {order_id} not found")
        self.order_id = order_id


class MalformedMessageError(OrderError):
    """Queue payload is not a valid order id (poison message)."""


class TransientInfrastructureError(OrderError):
    """Store or broker unavailable; safe to retry idempotent operations."""


class StaleOrMissingOrderError(OrderError):
    """Worker found the order gone or no longer NEW. A no-op, not a failure."""


class ConflictError(StaleOrMissingOrderError):
    """Conditional update precondition did not hold."""

    def __init__(self, order_id, expected, actual):
        super().__init__(
            f"Order {order_id} has status {actual}, expected {expected}"
        )
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
