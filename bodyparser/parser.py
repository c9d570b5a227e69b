from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass

from bodyparser.exceptions import LimitExceededError, ParserClosedError, TruncatedInputError
from bodyparser.headers import validate_boundary

CRLF = b"\r\n"
DASHES = b"--"
DEFAULT_MAX_HEADER_SIZE = 16 * 1024


class MultipartState(enum.IntEnum):
    PREAMBLE = 0
    HEADER = 1
    BODY = 2
    END = 3


class MultipartPart:
    @dataclass(frozen=True)
    class Header:
        name: str
        value: str

    @dataclass(frozen=True)
    class Body:
        data: bytes
        done: bool = False


class MultipartParser:
    """A state-machine Sans-IO multipart parser.

    The parser is designed to be used in a streaming fashion, where data is fed to the parser in chunks
    and the parser emits events as it parses the data.

    The states are as follows:
    - PREAMBLE: The preamble of the multipart message.
        Which can become either `HEADER` (for the first part header) or `END`.
    - HEADER: A part header.
        Which can become `BODY` once the blank line closing the header block is found.
    - BODY: A part body.
        Which can become either `HEADER` (for the next part) or `END`.
    - END: The end of the multipart message.
        Which is the final state.
    """

    def __init__(
        self,
        boundary: bytes | str,
        max_size: int | None = None,
        header_charset: str = "utf8",
        max_header_size: int = DEFAULT_MAX_HEADER_SIZE,
    ) -> None:
        """Create a new multipart parser instance.

        Args:
            boundary: The boundary to use for parsing.
            max_size: The maximum size of the body data. If None, no limit is enforced.
            header_charset: The charset to use for decoding header values.
            max_header_size: The maximum size of a single part's header block.
        """
        self.boundary = validate_boundary(boundary)
        self.max_size = max_size
        self.header_charset = header_charset
        self.max_header_size = max_header_size
        self.logger = logging.getLogger(__name__)

        self.state = MultipartState.PREAMBLE
        self.closed = False

        self._delimiter = DASHES + self.boundary
        self._buffer = bytearray()
        self._preamble = bytearray()
        self._events: deque[MultipartPart.Header | MultipartPart.Body] = deque()
        self._header_lines: list[tuple[str, str]] = []
        self._header_size = 0
        self._received = 0
        self._body_start = False
        self._epilogue_logged = False

    @property
    def preamble(self) -> bytes:
        """Everything received so far, as long as no delimiter has been found."""
        if self.state is not MultipartState.PREAMBLE:
            return b""
        return bytes(self._preamble + self._buffer)

    def parse(self, data: bytes) -> None:
        if self.closed:
            raise ParserClosedError("The parser is closed.")
        if not data:
            return

        self._received += len(data)
        if self.max_size is not None and self._received > self.max_size:
            raise LimitExceededError(f"The body size surpasses the limit of {self.max_size} bytes.")

        if self.state is MultipartState.END:
            self._discard_epilogue(len(data))
            return

        self._buffer += data
        offset = 0
        while True:
            if self.state is MultipartState.PREAMBLE:
                offset, more = self._parse_preamble(offset)
            elif self.state is MultipartState.HEADER:
                offset, more = self._parse_header(offset)
            elif self.state is MultipartState.BODY:
                offset, more = self._parse_body(offset)
            else:
                self._discard_epilogue(len(self._buffer) - offset)
                offset = len(self._buffer)
                more = False
            if not more:
                break

        del self._buffer[:offset]

    def next_event(self) -> MultipartPart.Header | MultipartPart.Body | None:
        if self._events:
            return self._events.popleft()
        return None

    def finish(self) -> None:
        """Signal the end of the input.

        Raises `TruncatedInputError` if the input stopped inside a part.
        """
        if self.closed:
            raise ParserClosedError("The parser is closed.")
        if self.state is MultipartState.HEADER:
            raise TruncatedInputError("The input ended before the part's header block was closed.")
        if self.state is MultipartState.BODY:
            raise TruncatedInputError("The input ended before the terminal boundary.")

    def close(self) -> None:
        self.closed = True
        self._buffer.clear()
        self._preamble.clear()
        self._events.clear()
        self._header_lines.clear()

    def _parse_preamble(self, offset: int) -> tuple[int, bool]:
        buffer = self._buffer
        d_len = len(self._delimiter)
        start = offset
        while True:
            index = buffer.find(self._delimiter, start)
            if index == -1:
                # Keep what could still be the beginning of a delimiter.
                keep = max(offset, len(buffer) - (d_len - 1))
                self._preamble += buffer[offset:keep]
                return keep, False

            tail = bytes(buffer[index + d_len : index + d_len + 2])
            if tail == CRLF:
                skipped = len(self._preamble) + index - offset
                self.logger.debug("Found the first delimiter after %d preamble bytes", skipped)
                self._start_part()
                self._preamble.clear()
                return index + d_len + 2, True
            if tail == DASHES:
                self.logger.debug("Found the terminal delimiter before any part")
                self._preamble.clear()
                self.state = MultipartState.END
                return index + d_len + 2, True
            if len(tail) < 2 and (CRLF.startswith(tail) or DASHES.startswith(tail)):
                self._preamble += buffer[offset:index]
                return index, False

            # Something that looks like a delimiter, but isn't followed by CRLF or `--`.
            start = index + 1

    def _parse_header(self, offset: int) -> tuple[int, bool]:
        buffer = self._buffer
        index = buffer.find(CRLF, offset)
        if index == -1:
            if self._header_size + len(buffer) - offset > self.max_header_size:
                raise LimitExceededError(f"The part header block surpasses {self.max_header_size} bytes.")
            return offset, False

        self._header_size += index - offset + 2
        if self._header_size > self.max_header_size:
            raise LimitExceededError(f"The part header block surpasses {self.max_header_size} bytes.")

        if index == offset:
            for name, value in self._header_lines:
                self._events.append(MultipartPart.Header(name=name, value=value))
            self._header_lines.clear()
            self.state = MultipartState.BODY
            self._body_start = True
            return offset + 2, True

        self._add_header_line(bytes(buffer[offset:index]))
        return index + 2, True

    def _add_header_line(self, raw: bytes) -> None:
        line = raw.decode(self.header_charset, errors="replace")

        if line[0] in " \t":
            if not self._header_lines:
                self.logger.warning("Skipping header continuation line without a header: %r", line)
                return
            name, value = self._header_lines[-1]
            self._header_lines[-1] = (name, f"{value} {line.strip()}".strip())
            return

        name, colon, value = line.partition(":")
        name = name.strip()
        if not colon or not name:
            self.logger.warning("Skipping malformed header line: %r", line)
            return
        self._header_lines.append((name, value.strip()))

    def _parse_body(self, offset: int) -> tuple[int, bool]:
        buffer = self._buffer
        delimiter = self._delimiter
        d_len = len(delimiter)

        if self._body_start:
            # The CRLF closing the header block also opens a delimiter right after it.
            head = bytes(buffer[offset : offset + d_len + 2])
            if head in (delimiter + CRLF, delimiter + DASHES):
                self._body_start = False
                self._emit_body(bytearray(), done=True)
                self._end_part(head[d_len:])
                return offset + d_len + 2, True
            if (delimiter + CRLF).startswith(head) or (delimiter + DASHES).startswith(head):
                return offset, False
            self._body_start = False

        # Inside a body, a delimiter only counts at the start of a line.
        marker = CRLF + delimiter
        m_len = len(marker)
        start = offset
        while True:
            index = buffer.find(marker, start)
            if index == -1:
                # Hold back what could still be the beginning of a delimiter.
                keep = max(offset, len(buffer) - (m_len - 1))
                self._emit_body(buffer[offset:keep], done=False)
                return keep, False

            tail = bytes(buffer[index + m_len : index + m_len + 2])
            if tail == CRLF or tail == DASHES:
                self._emit_body(buffer[offset:index], done=True)
                self._end_part(tail)
                return index + m_len + 2, True
            if len(tail) < 2 and (CRLF.startswith(tail) or DASHES.startswith(tail)):
                self._emit_body(buffer[offset:index], done=False)
                return index, False

            start = index + 1

    def _end_part(self, tail: bytes) -> None:
        if tail == CRLF:
            self._start_part()
        else:
            self.logger.debug("Found the terminal delimiter")
            self.state = MultipartState.END

    def _emit_body(self, data: bytearray, done: bool) -> None:
        if data or done:
            self._events.append(MultipartPart.Body(data=bytes(data), done=done))

    def _start_part(self) -> None:
        self.state = MultipartState.HEADER
        self._header_lines = []
        self._header_size = 0

    def _discard_epilogue(self, size: int) -> None:
        if size and not self._epilogue_logged:
            self.logger.debug("Skipping data after the terminal delimiter")
            self._epilogue_logged = True
