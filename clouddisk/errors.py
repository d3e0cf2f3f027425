"""
Typed storage errors shared by the path, naming, walking and streaming layers
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Stable, machine-checkable error kinds"""
    INVALID_PATH = "InvalidPath"
    NOT_FOUND = "NotFound"
    NOT_A_FILE = "NotAFile"
    NOT_A_DIRECTORY = "NotADirectory"
    RANGE_NOT_SATISFIABLE = "RangeNotSatisfiable"
    IO_FAILURE = "IOFailure"
    NAME_CONFLICT_EXHAUSTED = "NameConflictExhausted"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"


# HTTP status used when an error kind reaches the API layer
STATUS_BY_KIND = {
    ErrorKind.INVALID_PATH: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NOT_A_FILE: 400,
    ErrorKind.NOT_A_DIRECTORY: 400,
    ErrorKind.RANGE_NOT_SATISFIABLE: 416,
    ErrorKind.IO_FAILURE: 500,
    ErrorKind.NAME_CONFLICT_EXHAUSTED: 409,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
}


class StorageError(Exception):
    """Base class for every error raised by the storage core.

    Messages only ever mention what the client supplied (relative paths,
    names); absolute storage paths and OS error text go to the log.
    """

    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class InvalidPathError(StorageError):
    """Raised when a path escapes the storage root or is malformed"""
    kind = ErrorKind.INVALID_PATH


class NotFoundError(StorageError):
    kind = ErrorKind.NOT_FOUND


class NotAFileError(StorageError):
    kind = ErrorKind.NOT_A_FILE


class NotADirError(StorageError):
    kind = ErrorKind.NOT_A_DIRECTORY


class RangeNotSatisfiableError(StorageError):
    """Raised when a byte range falls outside the file"""
    kind = ErrorKind.RANGE_NOT_SATISFIABLE

    def __init__(self, message: str, size: int):
        super().__init__(message)
        self.size = size


class IOFailureError(StorageError):
    kind = ErrorKind.IO_FAILURE


class NameConflictExhaustedError(StorageError):
    """Raised when no free ``name (n)`` variant exists within the probe limit"""
    kind = ErrorKind.NAME_CONFLICT_EXHAUSTED


class PayloadTooLargeError(StorageError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE

    def __init__(self, message: str, limit: Optional[int] = None):
        super().__init__(message)
        self.limit = limit
