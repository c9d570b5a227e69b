from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from bodyparser.headers import parse_options_header

DEFAULT_CONTENT_TYPE = "text/plain"


class HeaderKind(enum.Enum):
    """The part headers a decoder recognises and keeps.

    Every other header line of a part is dropped.
    """

    DISPOSITION = "Content-Disposition"
    TYPE = "Content-Type"
    TRANSFER_ENCODING = "Content-Transfer-Encoding"
    CONTENT_RANGE = "Content-Range"

    @classmethod
    def from_name(cls, name: str) -> HeaderKind | None:
        return _HEADER_KINDS.get(name.strip().lower())


_HEADER_KINDS = {kind.value.lower(): kind for kind in HeaderKind}


class ParsedBody:
    """A decoded body: either `ParsedBody.Raw` bytes or a `ParsedBody.Parts` sequence.

    Callers branch on the variant they received:

    ```python
    body = decode(request_body, boundary)
    if isinstance(body, ParsedBody.Parts):
        for part in body:
            ...
    else:
        handle_raw(body.data)
    ```
    """

    __slots__ = ()

    Raw: type[RawBody]
    Parts: type[MultipartBody]

    @property
    def is_multipart(self) -> bool:
        return isinstance(self, MultipartBody)


@dataclass(frozen=True)
class RawBody(ParsedBody):
    data: bytes = b""

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class MultipartBody(ParsedBody):
    parts: tuple[Part, ...] = ()

    def __iter__(self) -> Iterator[Part]:
        return iter(self.parts)

    def __len__(self) -> int:
        return len(self.parts)

    def __getitem__(self, index: int) -> Part:
        return self.parts[index]


ParsedBody.Raw = RawBody
ParsedBody.Parts = MultipartBody


@dataclass(frozen=True)
class Part:
    """One boundary-delimited section of a multipart body.

    Parts are only built by the decoder; once handed out they are read-only,
    including the `headers` mapping. Parts are hashable; `headers` does not
    take part in the hash.
    """

    #: The `name` option of Content-Disposition, or an empty string.
    name: str = ""
    #: The `filename` option of Content-Disposition, or an empty string.
    filename: str = ""
    #: The media type of Content-Type, lower-cased and without options.
    type: str = DEFAULT_CONTENT_TYPE
    #: The `charset` option of Content-Type, if present.
    charset: str | None = None
    headers: Mapping[HeaderKind, str] = field(default_factory=lambda: MappingProxyType({}), hash=False)
    body: ParsedBody = field(default_factory=RawBody)

    @property
    def content_type(self) -> str:
        return self.type

    @property
    def data(self) -> bytes:
        """The raw body bytes, or an empty string for a nested multipart body."""
        if isinstance(self.body, RawBody):
            return self.body.data
        return b""

    @property
    def is_file(self) -> bool:
        return bool(self.filename)


class PartBuilder:
    """Collects the headers and body of the part currently being decoded."""

    def __init__(self) -> None:
        self.headers: dict[HeaderKind, str] = {}
        self.body = bytearray()

    def set_header(self, kind: HeaderKind, value: str) -> None:
        # The last occurrence of a header wins.
        self.headers[kind] = value

    def write(self, data: bytes) -> None:
        self.body += data

    @property
    def content_type(self) -> str:
        value = self.headers.get(HeaderKind.TYPE)
        if not value:
            return DEFAULT_CONTENT_TYPE
        media_type, _ = parse_options_header(value)
        return media_type or DEFAULT_CONTENT_TYPE

    def build(self, body: ParsedBody | None = None) -> Part:
        name = filename = ""
        disposition = self.headers.get(HeaderKind.DISPOSITION)
        if disposition:
            _, options = parse_options_header(disposition)
            name = options.get("name", "")
            filename = options.get("filename", "")

        charset = None
        content_type = self.headers.get(HeaderKind.TYPE)
        if content_type:
            _, options = parse_options_header(content_type)
            charset = options.get("charset")

        return Part(
            name=name,
            filename=filename,
            type=self.content_type,
            charset=charset,
            headers=MappingProxyType(dict(self.headers)),
            body=body if body is not None else RawBody(bytes(self.body)),
        )
