from __future__ import annotations


class SchoolHubError(Exception):
    """Base error for SchoolHub."""


class DatabaseError(SchoolHubError):
    """Database layer failure."""


class IntegrationUnavailableError(SchoolHubError):
    """External integration temporarily unavailable (circuit open)."""


class MediaStorageError(SchoolHubError):
    """Media storage layer failure."""


class StorageUnavailableError(MediaStorageError):
    """Physical delete requested but no media storage endpoint is configured."""


class StorageUploadFailedError(MediaStorageError):
    """Media service rejected or failed an upload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageDeleteFailedError(MediaStorageError):
    """Media service reported a failure while deleting a specific URL."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
