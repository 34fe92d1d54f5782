"""Custom exceptions for the POS inventory engine."""


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(PosError):
    """Raised for malformed input. Nothing has been written when it is raised."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class EmptyOrderError(ValidationError):
    """Raised when an order is submitted without cart lines."""
    def __init__(self, message="Order must contain at least one item"):
        super().__init__(message)


class StaleContainerMathError(ValidationError):
    """Raised when container totals are requested with missing or non-positive inputs."""
    def __init__(self, message="Container quantities must all be positive numbers"):
        super().__init__(message)


class InsufficientPaymentError(PosError):
    """Raised when the tendered amount does not cover the order total."""
    def __init__(self, total, amount_paid):
        message = f"Amount paid {amount_paid} is less than order total {total}"
        super().__init__(message, 402, {'total': str(total), 'amount_paid': str(amount_paid)})
        self.total = total
        self.amount_paid = amount_paid


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class TransactionFailure(PosError):
    """The store rejected the unit of work. Nothing was committed; safe to retry."""
    retryable = True

    def __init__(self, message="The operation could not be completed, please retry"):
        super().__init__(message, 503)


class StoreUnavailableError(TransactionFailure):
    """The store could not be reached at all."""
    def __init__(self, store_name):
        super().__init__(f"Store '{store_name}' is unavailable")
        self.store_name = store_name


class SyncReplayFailure(PosError):
    """A queued write could not be replayed. Only ever logged."""
    def __init__(self, entry_id, reason):
        super().__init__(f"Replay of sync entry #{entry_id} failed: {reason}", 500)
        self.entry_id = entry_id
        self.reason = reason
