"""Domain errors raised by the user service."""

import uuid


class UserServiceError(Exception):
    """Base class for errors the request layer turns into JSON responses."""

    message: str = "The request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        """Initialise with an optional caller-facing message."""
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ConflictError(UserServiceError):
    """A unique field (email or CPF) already belongs to another user."""

    FIELD_LABELS = {"email": "email", "cpf": "CPF"}

    def __init__(self, field: str | None = None) -> None:
        """
        Initialise the conflict for a field.

        Args:
            field: Name of the conflicting column, or None when it could not be determined
        """
        self.field = field
        if field is None:
            message = "A user with the same unique data is already registered."
        else:
            message = f"This {self.FIELD_LABELS.get(field, field)} is already registered."
        super().__init__(message)


class NotFoundError(UserServiceError):
    """No user exists with the requested id."""

    message = "User not found."

    def __init__(self, user_id: uuid.UUID | None = None) -> None:
        """Initialise with the id that was looked up."""
        self.user_id = user_id
        super().__init__()


class StorageError(UserServiceError):
    """The database failed in a way the caller cannot fix.

    The message is generic. The driver exception is kept as ``__cause__``
    for server-side logging.
    """

    message = "An unexpected error occurred. Please try again later."

    def __init__(self, operation: str) -> None:
        """Initialise with the name of the failed service operation."""
        self.operation = operation
        super().__init__()
