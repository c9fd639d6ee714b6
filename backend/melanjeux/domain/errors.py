class BookingError(Exception):
    """Base class for booking domain errors. `code` is the stable identifier returned to clients."""

    code = "booking_error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class NotFoundError(BookingError):
    code = "not_found"


class ForbiddenError(BookingError):
    code = "forbidden"


class BookingValidationError(BookingError):
    code = "validation_error"


class NotJoinableError(BookingError):
    code = "slot_not_joinable"


class SlotFullError(BookingError):
    code = "slot_full"


class ConflictError(BookingError):
    code = "conflict"


class InternalError(BookingError):
    code = "internal_error"
