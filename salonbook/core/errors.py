"""
Error taxonomy of the scheduling core.

Every error carries a ``user_message`` that callers can show as-is. Validation
and invalid-transition errors are raised before any I/O; storage failures are
wrapped into result objects by the services (see ``salonbook.models.db_models``).
"""


class SchedulingError(Exception):
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = None, user_message: str = None):
        super().__init__(message or user_message or self.user_message)
        if user_message:
            self.user_message = user_message


class ValidationError(SchedulingError):
    """Missing or malformed input. Never reaches storage."""
    user_message = "Please check the booking details and try again."


class SubmissionInProgressError(SchedulingError):
    user_message = "Your booking is already being processed."


class ConflictError(SchedulingError):
    """The requested slot is taken."""
    user_message = "This time is no longer available. Please choose another time."


class StorageError(SchedulingError):
    pass


class TransientStorageError(StorageError):
    """Network/server failure. Safe to retry the whole operation."""
    user_message = "We could not reach the server. Please try again."


class UniqueConstraintError(StorageError):
    """Insert/update rejected by a unique index (PostgreSQL 23505)."""

    def __init__(self, message: str = None, constraint: str = None):
        super().__init__(message)
        self.constraint = constraint


class AppointmentNotFoundError(SchedulingError):
    user_message = "Appointment not found."


class InvalidTransitionError(SchedulingError):
    user_message = "This status change is not allowed."

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move appointment from '{current}' to '{target}'")


class FinancialSyncError(SchedulingError):
    """Status was saved but the revenue posting failed. Retry independently."""
    user_message = "Status updated, but the revenue could not be registered in the financial records."

    def __init__(self, appointment_id, message: str = None):
        self.appointment_id = appointment_id
        super().__init__(message or f"Financial posting failed for appointment {appointment_id}")
