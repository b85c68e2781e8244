"""Scheduling domain errors

Messages only name identifiers and the failed constraint, never shift titles
or dates belonging to other records.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class; carries the HTTP status and a stable error code"""

    status_code = 400
    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload["violations"] = self.details
        return payload


class RecurrenceValidationError(SchedulingError):
    code = "invalid_recurrence"

    def __init__(self, violations: list):
        self.violations = violations
        message = "Invalid recurrence rule: " + ", ".join(v.message for v in violations)
        super().__init__(message, details=[{"constraint": v.constraint, "message": v.message} for v in violations])


class MalformedOccurrenceIdError(SchedulingError):
    code = "malformed_occurrence_id"


class InvalidOccurrenceError(SchedulingError):
    """The date is not generated by the shift's rule"""

    status_code = 404
    code = "invalid_occurrence"


class OccurrenceCancelledError(SchedulingError):
    """The occurrence exists but is cancelled; callers treat it as not found"""

    status_code = 404
    code = "occurrence_cancelled"


class ShiftNotFoundError(SchedulingError):
    status_code = 404
    code = "shift_not_found"

    def __init__(self, shift_id: str):
        super().__init__(f"Shift not found: {shift_id}")
        self.shift_id = shift_id


class SeriesMutationError(SchedulingError):
    code = "invalid_mutation"
