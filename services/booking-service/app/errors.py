class BookingEngineError(Exception):
    """Base class for caller-facing booking errors."""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class NotFound(BookingEngineError):
    """Booking or offer does not exist."""

    status_code = 404
    code = "not_found"


class Forbidden(BookingEngineError):
    """Acting party does not own this booking or offer."""

    status_code = 403
    code = "forbidden"


class AlreadyResolved(BookingEngineError):
    """Offer is no longer pending."""

    status_code = 409
    code = "already_resolved"


class LostRace(BookingEngineError):
    """Booking was already assigned to another provider."""

    status_code = 409
    code = "lost_race"


class InvalidTransition(BookingEngineError):
    """Requested status is not reachable from the current state."""

    status_code = 409
    code = "invalid_transition"


class ConcurrentUpdate(BookingEngineError):
    """Booking is being modified concurrently, retry the request."""

    status_code = 409
    code = "concurrent_update"


class CancellationWindowViolated(BookingEngineError):
    """Booking is too close to its scheduled time to be cancelled by the provider."""

    status_code = 409
    code = "cancellation_window_violated"


class Throttled(BookingEngineError):
    """A verification code is still valid for this booking."""

    status_code = 429
    code = "throttled"

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message or f"Verification code still valid, retry in {retry_after}s")


class ContactUnavailable(BookingEngineError):
    """Customer has no reachable contact address."""

    status_code = 409
    code = "contact_unavailable"


class CodeDeliveryFailed(BookingEngineError):
    """Verification code could not be delivered to the customer."""

    status_code = 502
    code = "code_delivery_failed"


class MalformedCode(BookingEngineError):
    """Verification code must be exactly 6 digits."""

    status_code = 422
    code = "malformed_code"


class CodeExpired(BookingEngineError):
    """No valid verification code, request a new one."""

    status_code = 410
    code = "code_expired"


class CodeMismatch(BookingEngineError):
    """Verification code does not match."""

    status_code = 422
    code = "code_mismatch"

    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(f"Verification code does not match ({attempts_remaining} attempts left)")


class AttemptsExhausted(BookingEngineError):
    """Too many wrong codes, request a new one."""

    status_code = 423
    code = "attempts_exhausted"
