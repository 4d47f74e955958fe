import mimetypes

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_mime_type(filename: str, declared: str | None = None) -> str:
    """Content type for a stored file.

    A specific type declared by the client wins; otherwise the type is
    guessed from the file extension.
    """
    if declared and declared != DEFAULT_CONTENT_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE
