"""Domain errors raised by GuestPass workflows."""

from __future__ import annotations


class GuestPassError(Exception):
    """Base error carrying a stable machine code and a readable message."""

    status_code = 500

    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code
        super().__init__(self.message)


class AuthorizationError(GuestPassError):
    status_code = 401


class NotFoundError(GuestPassError):
    status_code = 404


class ValidationError(GuestPassError):
    status_code = 400


class AlreadyRegisteredError(GuestPassError):
    """Raised when an (event, email) pair is already on the guest list."""

    status_code = 409

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            "ALREADY_REGISTERED",
            message or "One or more participants are already registered for this event",
        )


class StorageError(GuestPassError):
    """Backing-store failure; the message is the store's own."""

    def __init__(self, message: str) -> None:
        super().__init__("STORAGE_ERROR", message)


class ConfigurationError(GuestPassError):
    pass


class DeliveryError(Exception):
    """A single email could not be delivered."""
