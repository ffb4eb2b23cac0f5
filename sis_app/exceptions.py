"""Domain errors raised by the scheduling, gradebook and mastery core.

The HTTP layer maps these to JSON responses in ``sis_app.middleware``.
"""


class GradebookError(Exception):
    """Base class for every failure that marks a compute run as failed."""

    code = "GRADEBOOK_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GradeValidationError(GradebookError, ValueError):
    """Configuration is not computable: weights, profiles or transmutation tables."""

    code = "GRADE_VALIDATION_ERROR"


class TransmutationLookupError(GradebookError, LookupError):
    """A raw grade has no row at or below it in the transmutation table."""

    code = "TRANSMUTATION_LOOKUP_ERROR"

    def __init__(self, message: str, initial_grade: float = None):
        super().__init__(message)
        self.initial_grade = initial_grade


class SchemeLockedError(GradebookError):
    """Write attempted against a published scheme or transmutation table."""

    code = "SCHEME_LOCKED"


class InvalidTransitionError(Exception):
    """A mastery proposal cannot move from its current status with this action."""

    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str, action: str):
        self.current_status = current_status
        self.action = action
        self.message = f"Cannot {action} a proposal in status '{current_status}'"
        super().__init__(self.message)
