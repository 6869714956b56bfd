"""Shared error types for the agent supervisor package."""


class SupervisorError(Exception):
    """Base exception for supervisor errors.

    Use this for user-facing errors that should have actionable messages.
    """

    pass


class SpawnError(SupervisorError):
    """Raised when an agent subprocess cannot be launched.

    Task status rollback is the caller's responsibility.
    """

    pass


class InvalidRequestError(SupervisorError):
    """Raised when external input fails schema validation.

    The message names the missing or invalid field(s).
    """

    pass
