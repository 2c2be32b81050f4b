"""Scheduling error taxonomy."""


class SchedulingError(Exception):
    """Base class for every error the scheduling core raises."""

    default_message = "Scheduling request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(SchedulingError):
    default_message = "Not found."


class ModalityUnsupportedError(SchedulingError):
    default_message = "This doctor does not offer virtual appointments."


class SlotUnavailableError(SchedulingError):
    default_message = "This time is no longer available."


class LeadTimeViolationError(SchedulingError):
    default_message = "Appointments must be booked further in advance."


class InvalidTransitionError(SchedulingError):
    default_message = "This status change is not allowed."


class PermissionDeniedError(SchedulingError):
    default_message = "You are not allowed to do that."


class PersistenceError(SchedulingError):
    default_message = "Database unavailable. Please try again."
