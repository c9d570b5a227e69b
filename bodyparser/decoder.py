from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterable, Iterator
from typing import TYPE_CHECKING, Any

from bodyparser.exceptions import ConfigurationError, LimitExceededError, MultipartError, TruncatedInputError
from bodyparser.headers import boundary_from_content_type
from bodyparser.parser import DEFAULT_MAX_HEADER_SIZE, MultipartParser, MultipartPart, MultipartState
from bodyparser.part import HeaderKind, MultipartBody, ParsedBody, Part, PartBuilder, RawBody

if TYPE_CHECKING:  # pragma: no cover
    from typing import Protocol

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    BodySource = bytes | bytearray | memoryview | SupportsRead | Iterable[bytes]

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_DEPTH = 8


class MultipartDecoder:
    """Turns a multipart body into a sequence of `Part` values.

    Feed the body with `feed()` in chunks of any size, then call `finish()` to get the
    `ParsedBody`. A body without any delimiter comes back as `ParsedBody.Raw`.

    ```python
    with MultipartDecoder(boundary) as decoder:
        for chunk in stream:
            decoder.feed(chunk)
        body = decoder.finish()
    ```
    """

    def __init__(
        self,
        boundary: bytes | str,
        *,
        max_size: int | None = None,
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
        max_parts: int | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        header_charset: str = "utf8",
        _depth: int = 0,
    ) -> None:
        """Create a new decoder.

        Args:
            boundary: The boundary parameter of the body's Content-Type.
            max_size: The maximum size of the body. If None, no limit is enforced.
            max_header_size: The maximum size of a single part's header block.
            max_parts: The maximum number of parts. If None, no limit is enforced.
            max_depth: How many levels of nested multipart bodies are decoded.
            header_charset: The charset to use for decoding header values.
        """
        self._parser = MultipartParser(
            boundary, max_size=max_size, header_charset=header_charset, max_header_size=max_header_size
        )
        self.max_header_size = max_header_size
        self.max_parts = max_parts
        self.max_depth = max_depth
        self.header_charset = header_charset
        self._depth = _depth
        self.logger = logging.getLogger(__name__)

        self._builder: PartBuilder | None = None
        self._parts: list[Part] = []

    def __enter__(self) -> MultipartDecoder:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def state(self) -> MultipartState:
        return self._parser.state

    @property
    def closed(self) -> bool:
        return self._parser.closed

    @property
    def parts(self) -> tuple[Part, ...]:
        """The parts completed so far."""
        return tuple(self._parts)

    def feed(self, chunk: bytes) -> tuple[Part, ...]:
        """Parse a chunk of the body and return the parts it completed."""
        try:
            self._parser.parse(chunk)
            return tuple(self._handle_events())
        except MultipartError:
            self.close()
            raise

    def finish(self) -> ParsedBody:
        """Signal the end of the body and return the decoded result."""
        try:
            self._parser.finish()
        except TruncatedInputError as exc:
            self.close()
            raise TruncatedInputError(str(exc), self.parts) from None

        if self._parser.state is MultipartState.PREAMBLE:
            data = self._parser.preamble
            self.close()
            if not data:
                return MultipartBody(())
            self.logger.debug("No delimiter found in %d bytes, keeping the raw body", len(data))
            return RawBody(data)

        self.close()
        return MultipartBody(self.parts)

    def close(self) -> None:
        """Stop decoding. A part that is still in progress is dropped."""
        if self._builder is not None:
            self.logger.debug("Dropping an incomplete part")
            self._builder = None
        self._parser.close()

    def _handle_events(self) -> Iterator[Part]:
        while (event := self._parser.next_event()) is not None:
            builder = self._builder
            if builder is None:
                if self.max_parts is not None and len(self._parts) >= self.max_parts:
                    raise LimitExceededError(f"The body has more than {self.max_parts} parts.")
                builder = self._builder = PartBuilder()

            if isinstance(event, MultipartPart.Header):
                kind = HeaderKind.from_name(event.name)
                if kind is None:
                    self.logger.debug("Dropping unrecognised part header %r", event.name)
                else:
                    builder.set_header(kind, event.value)
                continue

            builder.write(event.data)
            if event.done:
                part = self._build(builder)
                self._builder = None
                self._parts.append(part)
                yield part

    def _build(self, builder: PartBuilder) -> Part:
        if builder.content_type.startswith("multipart/"):
            return builder.build(self._decode_nested(builder))
        return builder.build()

    def _decode_nested(self, builder: PartBuilder) -> ParsedBody | None:
        if self._depth + 1 > self.max_depth:
            self.logger.warning("Not decoding a nested multipart body deeper than %d levels", self.max_depth)
            return None

        try:
            boundary = boundary_from_content_type(builder.headers[HeaderKind.TYPE])
        except ConfigurationError as exc:
            self.logger.warning("Keeping nested multipart body as raw bytes: %s", exc)
            return None
        if boundary is None:
            self.logger.warning("Keeping nested multipart body without a boundary as raw bytes")
            return None

        try:
            body = decode(
                bytes(builder.body),
                boundary,
                max_header_size=self.max_header_size,
                max_parts=self.max_parts,
                max_depth=self.max_depth,
                header_charset=self.header_charset,
                _depth=self._depth + 1,
            )
        except MultipartError as exc:
            self.logger.warning("Keeping nested multipart body as raw bytes: %s", exc)
            return None

        if not isinstance(body, MultipartBody):
            return None
        return body


def _iter_chunks(body: BodySource, chunk_size: int) -> Iterator[bytes]:
    if isinstance(body, (bytes, bytearray, memoryview)):
        yield bytes(body)
    elif hasattr(body, "read"):
        while chunk := body.read(chunk_size):
            yield chunk
    else:
        yield from body


def decode(
    body: BodySource, boundary: bytes | str, *, chunk_size: int = DEFAULT_CHUNK_SIZE, **options: Any
) -> ParsedBody:
    """Decode a whole multipart body.

    `body` can be the body bytes, a binary file-like object or an iterable of chunks.
    The keyword options are passed on to `MultipartDecoder`.
    """
    decoder = MultipartDecoder(boundary, **options)
    with decoder:
        for chunk in _iter_chunks(body, chunk_size):
            decoder.feed(chunk)
        return decoder.finish()


async def decode_async(stream: AsyncIterable[bytes], boundary: bytes | str, **options: Any) -> ParsedBody:
    """Decode a multipart body read from an async iterable of chunks.

    If the task is cancelled while waiting for a chunk, the decoder is closed and the
    part in progress is dropped.
    """
    decoder = MultipartDecoder(boundary, **options)
    with decoder:
        async for chunk in stream:
            decoder.feed(chunk)
        return decoder.finish()
