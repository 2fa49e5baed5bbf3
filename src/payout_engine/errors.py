"""Exception hierarchy for the payout engine."""

from __future__ import annotations


class PayoutEngineError(Exception):
    """Base class for payout engine errors."""


class ConfigurationError(PayoutEngineError):
    """Process settings are missing or contradictory."""


class TransientStoreError(PayoutEngineError):
    """Store stayed unavailable after the configured retries."""

    def __init__(self, operation: str, attempts: int, cause: Exception):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Store operation '{operation}' failed after {attempts} attempt(s): {cause}"
        )


class DataIntegrityError(PayoutEngineError):
    """A record references data that is missing or inconsistent."""

    def __init__(self, record_type: str, record_id: str, reason: str):
        self.record_type = record_type
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"{record_type} {record_id}: {reason}")


class RecordNotFoundError(PayoutEngineError):
    """Requested record does not exist."""

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id} not found")


class InvalidTransitionError(PayoutEngineError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class GatewayError(PayoutEngineError):
    """Payment gateway could not be reached or answered unexpectedly."""


class GatewayTimeoutError(GatewayError):
    """Payment gateway did not answer within the configured timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Gateway call timed out after {timeout_seconds:g}s")
