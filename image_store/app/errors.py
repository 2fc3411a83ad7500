"""Error kinds raised by the folder store."""


class StoreError(Exception):
    """Base class for folder store failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(StoreError):
    """Missing payload or an unsafe folder/file name."""


class NotFound(StoreError):
    """The folder or entry is absent where absence is an error."""


class StorageUnavailable(StoreError):
    """The filesystem failed underneath an operation."""
