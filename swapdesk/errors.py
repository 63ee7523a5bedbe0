"""
Exception hierarchy for the order-execution pipeline.

RULES:
- Validation, not-found and invalid-state errors propagate synchronously
  to the caller and are never retried.
- TransientError subclasses are retried by the execution worker; once the
  retry budget is spent they become a FAILED order with the message kept.
- UnknownVenueError is a configuration fault: fatal to the task, no retry.
"""

from typing import Optional


class SwapDeskError(Exception):
    """Base exception for all SwapDesk errors."""
    pass


class ValidationError(SwapDeskError):
    """Malformed order input. Raised before any state is created."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class OrderNotFoundError(SwapDeskError):
    """No order exists with the given id."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InvalidStateError(SwapDeskError):
    """Operation not allowed in the order's current status."""

    def __init__(self, message: str, order_id: Optional[str] = None, status=None):
        super().__init__(message)
        self.order_id = order_id
        self.status = status


class InvalidTransitionError(InvalidStateError):
    """Transition is not declared in the transition registry."""
    pass


class TerminalStateError(InvalidStateError):
    """Cannot transition out of CONFIRMED or FAILED."""
    pass


class TransientError(SwapDeskError):
    """Failure that may succeed on a later attempt."""
    pass


class RoutingError(TransientError):
    """No usable quote could be obtained."""
    pass


class ExecutionError(TransientError):
    """Venue rejected or failed the execution."""
    pass


class OrderStoreError(TransientError):
    """Order store I/O failed."""
    pass


class QueueError(TransientError):
    """Submission queue I/O failed."""
    pass


class UnknownVenueError(SwapDeskError):
    """Quote names a venue the router was not configured with."""

    def __init__(self, venue: str):
        super().__init__(f"Unknown venue: {venue}")
        self.venue = venue
