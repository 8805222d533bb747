"""
Service-level errors raised below the HTTP layer.
Routes translate these into HTTPException responses.
"""


class StoreError(Exception):
    """A database query or mutation failed."""


class StorageError(Exception):
    """An image upload or download failed."""


class ImageNotFound(StorageError):
    pass


class InvalidImage(ValueError):
    pass


class SummaryGenerationError(Exception):
    """The generative model could not produce a summary."""


class GeolocationUnavailable(Exception):
    """The viewer's position was denied, timed out, or never supplied."""


class DuplicateRecord(StoreError):
    """A unique index rejected the write."""
