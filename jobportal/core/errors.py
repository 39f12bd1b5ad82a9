from __future__ import annotations


class IntakeError(Exception):
    """Base class for errors raised by the intake pipeline."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(IntakeError):
    """Bad input (file type/size, missing required field). Never retried."""


class TransientStoreError(IntakeError):
    """Timeout or dropped connection talking to the store."""

    def __init__(self, message: str = "The service is temporarily unavailable. Please try again.") -> None:
        super().__init__(message)


class ConflictError(IntakeError):
    """Duplicate unique key on insert. Callers convert this into an update."""

    def __init__(self, message: str = "", *, constraint: str | None = None) -> None:
        super().__init__(message)
        self.constraint = constraint


class ConfigurationError(IntakeError):
    """Malformed external identifier (e.g. a job reference that is not a UUID)."""


class NotFoundError(IntakeError):
    pass
