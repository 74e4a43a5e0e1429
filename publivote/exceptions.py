"""
Typed failures raised by the service layer.

Each exception carries the HTTP status the API layer should answer with;
``publivote.main`` registers a single handler for ``PublivoteError`` so
routers never translate these by hand.
"""


class PublivoteError(Exception):
    """Base exception for every failure surfaced to callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(PublivoteError):
    """A referenced publication, image, vote or user does not exist."""

    status_code = 404


class InvalidReference(PublivoteError):
    """Supplied tag ids did not resolve to any existing tag."""

    status_code = 400


class PermissionDenied(PublivoteError):
    status_code = 403


class InvalidUpdate(PublivoteError):
    """An edit request touched read-only fields or no editable ones."""

    status_code = 400


class StorageFailure(PublivoteError):
    """The relational transaction failed and was rolled back."""

    status_code = 500


class ObjectStoreFailure(PublivoteError):
    """An object-store operation failed."""

    status_code = 502

    def __init__(self, message: str, keys: list[str] | None = None) -> None:
        super().__init__(message)
        self.keys = keys or []
