import pytest

from stowage.server.errors import ErrorCode, ValidationException
from stowage.server.services.validation import (
    MAX_NAME_LENGTH,
    format_file_size,
    validate_item_name,
    validate_selection,
    validate_upload,
)


@pytest.mark.parametrize(
    ("name", "code"),
    [
        ("", ErrorCode.INVALID_NAME),
        ("x" * (MAX_NAME_LENGTH + 1), ErrorCode.NAME_TOO_LONG),
        ("what?.txt", ErrorCode.INVALID_CHARACTER),
        ("a,b", ErrorCode.INVALID_CHARACTER),
        ("../etc", ErrorCode.INVALID_CHARACTER),
        ("dir\\file", ErrorCode.INVALID_CHARACTER),
        ("nul", ErrorCode.RESERVED_NAME),
        ("LPT1.doc", ErrorCode.RESERVED_NAME),
        (".hidden", ErrorCode.INVALID_NAME_FORMAT),
        ("trailing ", ErrorCode.INVALID_NAME_FORMAT),
        ("name.", ErrorCode.INVALID_NAME_FORMAT),
    ],
)
def test_validate_item_name_rejects(name: str, code: ErrorCode) -> None:
    with pytest.raises(ValidationException) as exc_info:
        validate_item_name(name)
    assert exc_info.value.code == code


@pytest.mark.parametrize(
    "name", ["Docs", "Quarterly report (final).pdf", "x" * MAX_NAME_LENGTH, "CONFIG"]
)
def test_validate_item_name_accepts(name: str) -> None:
    assert validate_item_name(name) == name


def test_validate_upload() -> None:
    assert validate_upload("photo.JPG", 100, 1000) == "photo.JPG"

    with pytest.raises(ValidationException) as exc_info:
        validate_upload("photo.jpg", 1001, 1000)
    assert exc_info.value.code == ErrorCode.FILE_TOO_LARGE

    with pytest.raises(ValidationException) as exc_info:
        validate_upload("noextension", 10, 1000)
    assert exc_info.value.code == ErrorCode.INVALID_FILE_TYPE

    with pytest.raises(ValidationException) as exc_info:
        validate_upload(None, 10, 1000)
    assert exc_info.value.code == ErrorCode.FILE_REQUIRED


def test_validate_selection() -> None:
    assert validate_selection([3, 1, 3, 2, 1], 3) == [3, 1, 2]

    with pytest.raises(ValidationException) as exc_info:
        validate_selection([], 3)
    assert exc_info.value.code == ErrorCode.NO_ITEMS

    with pytest.raises(ValidationException) as exc_info:
        validate_selection([1, 2, 3, 4], 3)
    assert exc_info.value.code == ErrorCode.TOO_MANY_ITEMS


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (512, "512 B"),
        (1536, "1.5 KB"),
        (2 * 1024 * 1024, "2 MB"),
        (int(1.25 * 1024**3), "1.25 GB"),
    ],
)
def test_format_file_size(size: int, expected: str) -> None:
    assert format_file_size(size) == expected
