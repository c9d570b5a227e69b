# pyright: reportUnusedImport=false
from bodyparser.decoder import MultipartDecoder, decode, decode_async
from bodyparser.exceptions import (
    ConfigurationError,
    FormatError,
    LimitExceededError,
    MultipartError,
    ParserClosedError,
    TruncatedInputError,
)
from bodyparser.headers import boundary_from_content_type, parse_options_header
from bodyparser.parser import MultipartParser, MultipartPart, MultipartState
from bodyparser.part import HeaderKind, ParsedBody, Part


Raw = ParsedBody.Raw
Parts = ParsedBody.Parts


__all__ = (
    "MultipartDecoder",
    "decode",
    "decode_async",
    "MultipartParser",
    "MultipartState",
    "MultipartPart",
    "Part",
    "HeaderKind",
    "ParsedBody",
    "Raw",
    "Parts",
    "boundary_from_content_type",
    "parse_options_header",
    "MultipartError",
    "FormatError",
    "ConfigurationError",
    "TruncatedInputError",
    "LimitExceededError",
    "ParserClosedError",
)
