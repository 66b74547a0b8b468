"""Error types raised by the TimeStitch core."""


class TimeStitchError(Exception):
    """Base class for all TimeStitch errors."""


class ValidationError(TimeStitchError):
    """Entity data failed required-field or length constraints.

    Raised before any durable or remote side effect happens.
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class PersistenceError(TimeStitchError):
    """Durable local storage could not be read or written."""


class RemoteUnavailableError(TimeStitchError):
    """The remote backend could not be reached or did not answer in time."""


class RemoteRejectedError(TimeStitchError):
    """The remote backend was reached but refused the operation."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class EntityNotFoundError(TimeStitchError):
    """No project or memory with the given id is loaded."""
