"""
ShelfSim error taxonomy.

ValidationError subclasses are caller-correctable and safe to show to a
player. DomainInvariantError means the code asked for something impossible
(unknown spike type, illegal state transition) and is never retried.
TickAbortedError wraps whatever broke a day-advance after it was rolled back.

Scheduling refusals (spike cap / cooldown) are not exceptions: the scheduler
returns None and logs the skip.
"""


class ShelfSimError(Exception):
    """Base class for all ShelfSim errors."""


class ValidationError(ShelfSimError, ValueError):
    """Recoverable, caller-correctable failure."""


class InsufficientFundsError(ValidationError):
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds. Required: ${required / 100:,.2f}, Available: ${available / 100:,.2f}"
        )


class RouteCapacityExceededError(ValidationError):
    def __init__(self, quantity: int, capacity: int):
        self.quantity = quantity
        self.capacity = capacity
        super().__init__(f"Quantity ({quantity}) exceeds route capacity ({capacity})")


class NoPathFoundError(ValidationError):
    def __init__(self, source_id, target_id):
        self.source_id = source_id
        self.target_id = target_id
        super().__init__("No active routes found between these locations")


class InsufficientStockError(ValidationError):
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock at source: requested {requested}, available {available}")


class NotFoundError(ValidationError):
    """Referenced entity does not exist in this simulation."""


class DomainInvariantError(ShelfSimError, RuntimeError):
    """Programming or configuration error. Fatal for the current operation."""


class TickAbortedError(ShelfSimError, RuntimeError):
    """A day-advance failed and every phase effect was rolled back."""

    def __init__(self, simulation_id, day: int, cause: BaseException):
        self.simulation_id = simulation_id
        self.day = day
        self.cause = cause
        super().__init__(f"Day advance to day {day} aborted: {cause}")
