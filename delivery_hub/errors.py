"""
Error kinds raised by the order lifecycle services.

Every error a caller can see derives from DeliveryError and carries a stable
machine-readable ``code`` plus the HTTP status the API layer answers with.
The single exception handler registered in main.py renders them as:

    {"success": false, "error": "<code>", "message": "<text>"}

EstimationFailure is the one kind that never reaches a caller: the
coordinator logs it and keeps the previous estimate.
"""


class DeliveryError(Exception):
    """Base class for errors returned to callers."""

    code = "delivery_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DeliveryError):
    code = "not_found"
    status_code = 404


class RestaurantNotFoundError(NotFoundError):
    code = "restaurant_not_found"


class AddressNotFoundError(NotFoundError):
    code = "address_not_found"


class ForbiddenError(DeliveryError):
    code = "forbidden"
    status_code = 403


class AddressNotOwnedError(ForbiddenError):
    """Raised when a delivery address belongs to someone other than the customer."""

    code = "address_not_owned"


class InvalidTransitionError(DeliveryError):
    """Raised when the requested status is not reachable from the current one."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, current: str = None, target: str = None):
        self.current = current
        self.target = target
        super().__init__(message)


class PaymentPendingError(InvalidTransitionError):
    """Raised when a restaurant tries to confirm an order still awaiting pre-payment."""

    code = "payment_pending"


class AlreadyAssignedError(DeliveryError):
    """Raised to every agent that loses the race to claim an order."""

    code = "already_assigned"
    status_code = 409


class EmptyCartError(DeliveryError):
    code = "empty_cart"
    status_code = 400


class LocationUnavailableError(DeliveryError):
    """Raised when an arrival estimate is requested before the agent reports a position."""

    code = "location_unavailable"
    status_code = 400


class EstimationFailure(Exception):
    """Raised by the ETA estimator when it cannot produce an estimate."""


class InvalidCartError(DeliveryError):
    """Raised when a cart line cannot be ordered from the chosen restaurant."""

    code = "invalid_cart"
    status_code = 400
