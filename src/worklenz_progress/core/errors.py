"""Business-rule errors raised by the progress command handler."""


class ProgressError(Exception):
    """Base class for errors reported back to the caller as ``success: false``."""

    def __init__(self, message: str, task_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class ValidationError(ProgressError):
    """Malformed or out-of-range command input."""


class NotFoundError(ProgressError):
    """The referenced task does not exist."""


class StructuralViolation(ProgressError):
    """The command would break a task-structure rule, e.g. manual mode on a parent."""
