class BookingError(Exception):
    """Base class for booking failures that are reported back to the caller."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class BookingValidationError(BookingError):
    """Request is well-formed but not bookable (outside hours, window, duration...)."""


class NotFoundError(BookingError):
    pass


class SlotConflictError(BookingError):
    """The requested slot was taken by another booking."""

    def __init__(self, detail: str = "This time slot is no longer available") -> None:
        super().__init__(detail)


class InvalidStatusTransitionError(BookingError):
    pass
