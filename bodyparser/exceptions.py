from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from bodyparser.part import Part


class MultipartError(ValueError):
    """Base class for every error raised by this package."""


class FormatError(MultipartError):
    """The multipart body (or the boundary describing it) could not be decoded."""


class ConfigurationError(FormatError):
    """The caller supplied an empty or malformed boundary."""


class TruncatedInputError(FormatError):
    """The input ended inside a header block or before the terminal delimiter.

    Parts that were completely decoded before the input ran out are kept in
    `parts`, so a broken trailing part does not discard the valid ones.
    """

    def __init__(self, message: str, parts: tuple[Part, ...] = ()) -> None:
        super().__init__(message)
        self.parts = parts


class LimitExceededError(MultipartError):
    """One of the configured size or count limits was reached."""


class ParserClosedError(MultipartError):
    """Data was fed after the parser was closed."""
