"""Input rules applied before a request reaches the hierarchy."""

import os
from collections.abc import Sequence

from ..errors import ErrorCode, ValidationException

MAX_NAME_LENGTH = 250

INVALID_NAME_CHARS = ("<", ">", ":", '"', "|", "?", "*", "\0", ",")

RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

ALLOWED_EXTENSIONS = frozenset(
    [
        # Documents
        ".pdf", ".doc", ".docx", ".rtf", ".txt", ".odt", ".pages",
        ".dotx", ".dotm", ".docm", ".xml", ".html", ".htm", ".mht",
        # Tables
        ".xls", ".xlsx", ".xlsm", ".xlsb", ".xltx", ".csv", ".ods",
        ".numbers", ".tsv",
        # Presentations
        ".ppt", ".pptx", ".pptm", ".potx", ".ppsx", ".ppsm", ".odp", ".key",
        # Images
        ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif",
        ".svg", ".webp", ".ico", ".heic", ".heif", ".raw", ".psd",
        # Audio
        ".mp3", ".wav", ".flac", ".aac", ".ogg", ".wma", ".m4a", ".opus", ".aiff",
        # Video
        ".mp4", ".avi", ".mkv", ".mov", ".wmv", ".flv", ".webm",
        ".m4v", ".3gp", ".ogv",
        # Archives
        ".zip", ".rar", ".7z", ".tar", ".gz", ".bz2", ".xz", ".cab", ".dmg", ".iso",
        # Code
        ".js", ".css", ".json", ".sql", ".py", ".java", ".cpp", ".c", ".cs",
        ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".ts", ".scss", ".less",
        ".yaml", ".yml", ".md",
        # Fonts
        ".ttf", ".otf", ".woff", ".woff2", ".eot",
        # Books
        ".epub", ".mobi", ".fb2", ".azw", ".azw3",
        # Design
        ".dwg", ".dxf", ".ai", ".eps", ".indd", ".sketch",
        # Other
        ".log", ".cfg", ".conf", ".ini", ".properties", ".ics", ".vcf", ".gpx", ".kml",
    ]
)  # fmt: skip

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1.5 KB`` or ``2 GB``."""
    value = float(size)
    order = 0
    while value >= 1024 and order < len(SIZE_UNITS) - 1:
        order += 1
        value /= 1024
    digits = 2 if order >= 2 else 1
    text = f"{value:.{digits}f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[order]}"


def validate_item_name(name: str | None) -> str:
    """Check a file or folder name and return it unchanged.

    Raises ValidationException with the code of the first rule that fails.
    """
    if not name:
        raise ValidationException("Item name cannot be empty", ErrorCode.INVALID_NAME)
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationException(
            f"Item name cannot exceed {MAX_NAME_LENGTH} characters",
            ErrorCode.NAME_TOO_LONG,
        )
    for char in INVALID_NAME_CHARS:
        if char in name:
            raise ValidationException(
                f"Item name contains invalid character: {char!r}",
                ErrorCode.INVALID_CHARACTER,
            )
    # Path separators would let a name address another directory.
    if "/" in name or "\\" in name:
        raise ValidationException(
            "Item name cannot contain path separators", ErrorCode.INVALID_CHARACTER
        )
    stem, _ = os.path.splitext(name)
    if stem.upper() in RESERVED_NAMES:
        raise ValidationException(f"'{name}' is a reserved name", ErrorCode.RESERVED_NAME)
    if name[0] in ". " or name[-1] in ". ":
        raise ValidationException(
            "Item name cannot start or end with a dot or space",
            ErrorCode.INVALID_NAME_FORMAT,
        )
    return name


def validate_upload(filename: str | None, size: int | None, max_bytes: int) -> str:
    """Check an uploaded file's name, declared size and extension."""
    if not filename or not size:
        raise ValidationException("File is required", ErrorCode.FILE_REQUIRED)
    if size > max_bytes:
        raise ValidationException(
            f"File size exceeds maximum allowed size ({format_file_size(max_bytes)})",
            ErrorCode.FILE_TOO_LARGE,
        )
    _, extension = os.path.splitext(filename)
    if extension.lower() not in ALLOWED_EXTENSIONS:
        raise ValidationException(
            f"File type not supported: {extension or filename}",
            ErrorCode.INVALID_FILE_TYPE,
        )
    return validate_item_name(filename)


def validate_selection(item_ids: Sequence[int] | None, max_items: int) -> list[int]:
    """Collapse duplicate ids, keeping order, and check the selection size."""
    if not item_ids:
        raise ValidationException("No items specified", ErrorCode.NO_ITEMS)
    unique = list(dict.fromkeys(item_ids))
    if len(unique) > max_items:
        raise ValidationException(
            f"Too many items selected (max {max_items})", ErrorCode.TOO_MANY_ITEMS
        )
    return unique
