"""Error codes and exceptions raised by the item services."""

from enum import Enum

__all__ = [
    "ErrorCode",
    "ItemServiceException",
    "ItemNotFoundException",
    "NameConflictException",
    "PathEscapeException",
    "ParentFolderDeletedException",
    "ArchiveTooLargeException",
    "TooManyFilesException",
    "StorageIOException",
    "PersistenceException",
    "ValidationException",
    "InvalidMoveException",
    "UserNotFoundException",
]


class ErrorCode(str, Enum):
    """Machine readable error codes returned in ``errorCode``."""

    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    NAME_ALREADY_EXISTS = "NAME_ALREADY_EXISTS"
    PATH_ESCAPE = "PATH_ESCAPE"
    PARENT_FOLDER_DELETED = "PARENT_FOLDER_DELETED"
    ARCHIVE_TOO_LARGE = "ARCHIVE_TOO_LARGE"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    IO_ERROR = "IO_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    # Validation
    INVALID_NAME = "INVALID_NAME"
    NAME_TOO_LONG = "NAME_TOO_LONG"
    INVALID_CHARACTER = "INVALID_CHARACTER"
    RESERVED_NAME = "RESERVED_NAME"
    INVALID_NAME_FORMAT = "INVALID_NAME_FORMAT"
    FILE_REQUIRED = "FILE_REQUIRED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    NO_ITEMS = "NO_ITEMS"
    TOO_MANY_ITEMS = "TOO_MANY_ITEMS"
    INVALID_MOVE = "INVALID_MOVE"

    # Users and plans
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_PLAN = "INVALID_PLAN"


class ItemServiceException(Exception):
    """Base exception carrying an error code for the response."""

    code: ErrorCode = ErrorCode.UNEXPECTED_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ItemNotFoundException(ItemServiceException):
    """Item is absent, owned by someone else or of the wrong type."""

    code = ErrorCode.ITEM_NOT_FOUND


class NameConflictException(ItemServiceException):
    """A live sibling of the same type already uses the name."""

    code = ErrorCode.NAME_ALREADY_EXISTS


class PathEscapeException(ItemServiceException):
    """A resolved path left the user's storage root."""

    code = ErrorCode.PATH_ESCAPE


class ParentFolderDeletedException(ItemServiceException):
    """Restore refused because the parent folder is still in the trash."""

    code = ErrorCode.PARENT_FOLDER_DELETED


class ArchiveTooLargeException(ItemServiceException):
    code = ErrorCode.ARCHIVE_TOO_LARGE


class TooManyFilesException(ItemServiceException):
    code = ErrorCode.TOO_MANY_FILES


class StorageIOException(ItemServiceException):
    """A physical filesystem operation failed."""

    code = ErrorCode.IO_ERROR


class PersistenceException(ItemServiceException):
    """A database transaction failed and was rolled back."""

    code = ErrorCode.UNEXPECTED_ERROR


class ValidationException(ItemServiceException):
    """Input rejected before reaching the hierarchy (code set per rule)."""

    code = ErrorCode.INVALID_NAME


class InvalidMoveException(ItemServiceException):
    """Move target is the item itself, one of its descendants or not a folder."""

    code = ErrorCode.INVALID_MOVE


class UserNotFoundException(ItemServiceException):
    code = ErrorCode.USER_NOT_FOUND
