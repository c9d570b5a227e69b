import logging

import pytest

from bodyparser import LimitExceededError, MultipartParser, MultipartPart, MultipartState, ParserClosedError
from bodyparser import TruncatedInputError

logging.getLogger().setLevel(logging.DEBUG)


def events(parser: MultipartParser) -> list[MultipartPart.Header | MultipartPart.Body]:
    result: list[MultipartPart.Header | MultipartPart.Body] = []
    while (event := parser.next_event()) is not None:
        result.append(event)
    return result


def bodies(parsed: list[MultipartPart.Header | MultipartPart.Body]) -> list[bytes]:
    result: list[bytes] = []
    current = b""
    for event in parsed:
        if isinstance(event, MultipartPart.Body):
            current += event.data
            if event.done:
                result.append(current)
                current = b""
    return result


def test_parser_size_boundary():
    with pytest.raises(ValueError, match="The boundary length should not surpass 70 bytes."):
        MultipartParser(b"x" * 71)


def test_parser_empty_boundary():
    with pytest.raises(ValueError, match="The boundary should not be empty."):
        MultipartParser(b"")


@pytest.fixture(scope="function")
def parser() -> MultipartParser:
    return MultipartParser(b"boundary")


def test_parser_preamble(parser: MultipartParser):
    parser.parse(b"\r\n--boundary")
    assert parser.state == MultipartState.PREAMBLE, "We should be at the 'Preamble' state, and be waiting for CRLF."


def test_parser_preamble_crlf(parser: MultipartParser):
    parser.parse(b"\r\n--boundary\r\n")
    assert parser.state == MultipartState.HEADER, "We should be at the 'Header' state, and be waiting for a header."


# RFC 2046 allows anything in the preamble, including text that almost looks like a delimiter.
# Ref.: https://www.rfc-editor.org/rfc/rfc2046.html#section-5.1.1
def test_parser_preamble_expected_boundary_character(parser: MultipartParser):
    parser.parse(b"--Boundary\r\n")
    assert parser.state == MultipartState.PREAMBLE, "We should be at the 'PREAMBLE' state."

    parser.parse(b"--boundary\r\n")
    assert parser.state == MultipartState.HEADER, "We should be at the 'HEADER' state."


def test_parser_preamble_cr_after_delimiter(parser: MultipartParser):
    parser.parse(b"--boundary\r")
    assert parser.state == MultipartState.PREAMBLE, "We should be at the 'PREAMBLE' state."

    parser.parse(b"--boundary\r\n")
    assert parser.state == MultipartState.HEADER, "We should be at the 'HEADER' state."


def test_parser_preamble_lf_after_delimiter(parser: MultipartParser):
    parser.parse(b"--boundary\n")
    assert parser.state == MultipartState.PREAMBLE, "We should be at the 'PREAMBLE' state."


def test_parser_preamble_random_characters_after_delimiter(parser: MultipartParser):
    parser.parse(b"--boundaryfoobar")
    assert parser.state == MultipartState.PREAMBLE, "We should be at the 'PREAMBLE' state."

    parser.parse(b"--boundary\r\n")
    assert parser.state == MultipartState.HEADER, "We should be at the 'HEADER' state."


def test_parser_preamble_end(parser: MultipartParser):
    parser.parse(b"\r\n--boundary--")
    assert parser.state == MultipartState.END, "We should be at the 'End' state, and be done parsing."


def test_parser_preamble_is_kept_until_a_delimiter(parser: MultipartParser):
    parser.parse(b"no delimiter ")
    parser.parse(b"in here --bound")
    assert parser.preamble == b"no delimiter in here --bound"

    parser.parse(b"ary\r\n")
    assert parser.state == MultipartState.HEADER
    assert parser.preamble == b""


def test_parser_header(parser: MultipartParser):
    parser.parse(b"\r\n--boundary\r\nContent-Type: text/plain\r\n\r\n")
    assert parser.state == MultipartState.BODY, "We should be at the 'Body' state, and be waiting for a body."

    event = parser.next_event()
    assert isinstance(event, MultipartPart.Header)
    assert event.name == "Content-Type"
    assert event.value == "text/plain"


def test_parser_multiple_headers(parser: MultipartParser):
    parser.parse(b"\r\n--boundary\r\nContent-Type: text/plain\r\nContent-Length: 5\r\n\r\n")
    assert parser.state == MultipartState.BODY, "We should be at the 'Body' state, and be waiting for a body."

    event = parser.next_event()
    assert isinstance(event, MultipartPart.Header)
    assert event.name == "Content-Type"
    assert event.value == "text/plain"

    event = parser.next_event()
    assert isinstance(event, MultipartPart.Header)
    assert event.name == "Content-Length"
    assert event.value == "5"


def test_parser_header_continuation_line(parser: MultipartParser):
    parser.parse(b"--boundary\r\nContent-Disposition: form-data;\r\n\tname=\"folded\"\r\n\r\n")

    assert events(parser) == [MultipartPart.Header(name="Content-Disposition", value='form-data; name="folded"')]


def test_parser_header_malformed_lines_are_skipped(parser: MultipartParser, caplog: pytest.LogCaptureFixture):
    parser.parse(b"--boundary\r\n continuation first\r\nno colon here\r\n: no name\r\nContent-Type: text/csv\r\n\r\n")

    assert parser.state == MultipartState.BODY
    assert events(parser) == [MultipartPart.Header(name="Content-Type", value="text/csv")]
    assert "Skipping malformed header line" in caplog.text


def test_parser_header_size_limit():
    parser = MultipartParser(b"boundary", max_header_size=32)
    with pytest.raises(LimitExceededError):
        parser.parse(b"--boundary\r\nContent-Disposition: form-data; name=\"much too long\"\r\n")


def test_parser_body(parser: MultipartParser):
    parser.parse(b"\r\n--boundary\r\nContent-Type: text/plain\r\n\r\nHello World!\r\n--boundary--")
    assert parser.state == MultipartState.END, "We should be at the 'END' state, and be done parsing."

    event = parser.next_event()
    assert isinstance(event, MultipartPart.Header)
    assert event.name == "Content-Type"
    assert event.value == "text/plain"

    event = parser.next_event()
    assert isinstance(event, MultipartPart.Body)
    assert event.data == b"Hello World!"


# A delimiter has to start a line, so this one is still body data.
# Ref.: https://www.rfc-editor.org/rfc/rfc2046.html#section-5.1.1
def test_parser_body_delimiter_without_crlf(parser: MultipartParser):
    parser.parse(b"\r\n--boundary\r\nContent-Type: text/plain\r\n\r\nHello World!--boundary--")
    assert parser.state == MultipartState.BODY, "We should still be at the 'BODY' state."

    parser.parse(b"\r\n--boundary--")
    assert parser.state == MultipartState.END
    assert bodies(events(parser)) == [b"Hello World!--boundary--"]


def test_parser_body_delimiter_right_after_headers(parser: MultipartParser):
    parser.parse(b"--boundary\r\nContent-Type: text/plain\r\n\r\n--boun")
    assert parser.state == MultipartState.BODY

    parser.parse(b"dary\r\n\r\nsecond\r\n--boundary--")
    assert parser.state == MultipartState.END
    assert bodies(events(parser)) == [b"", b"second"]


def test_parser_body_mid_line_lookalikes(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\nx--boundary\r\ny\r\n--boundary\r\n\r\ntail--boundary--\r\n--boundary--")

    assert bodies(events(parser)) == [b"x--boundary\r\ny", b"tail--boundary--"]


def test_parser_body_strips_crlf_before_delimiter(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\nline one\r\nline two\r\n\r\n--boundary--\r\n")

    assert events(parser) == [MultipartPart.Body(data=b"line one\r\nline two\r\n", done=True)]


def test_parser_body_split_delimiter(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\nHello\r\n--boun")
    assert parser.state == MultipartState.BODY
    first = events(parser)
    assert not any(event.done for event in first), "The part can only end once the delimiter is complete."

    parser.parse(b"dary\r\n\r\nWorld\r\n--boundary--")
    assert parser.state == MultipartState.END
    assert bodies(first + events(parser)) == [b"Hello", b"World"]


def test_parser_body_delimiter_lookalike(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\nnot a --boundaryX delimiter\r\n--boundary--")

    assert events(parser) == [MultipartPart.Body(data=b"not a --boundaryX delimiter", done=True)]


def test_parser_empty_part(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\n\r\n--boundary--")

    assert events(parser) == [MultipartPart.Body(data=b"", done=True)]


def test_parser_epilogue_is_discarded(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\ndata\r\n--boundary--\r\nepilogue")
    parser.parse(b"more epilogue")

    assert parser.state == MultipartState.END
    assert events(parser) == [MultipartPart.Body(data=b"data", done=True)]
    parser.finish()


def test_parser_finish_inside_header(parser: MultipartParser):
    parser.parse(b"--boundary\r\nContent-Type: text/plain\r\n")
    with pytest.raises(TruncatedInputError, match="header block"):
        parser.finish()


def test_parser_finish_inside_body(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\nunterminated")
    with pytest.raises(TruncatedInputError, match="terminal boundary"):
        parser.finish()


def test_parser_max_size():
    parser = MultipartParser(b"boundary", max_size=16)
    parser.parse(b"--boundary\r\n\r\n")
    with pytest.raises(LimitExceededError):
        parser.parse(b"0123456789")


def test_parser_closed(parser: MultipartParser):
    parser.parse(b"--boundary\r\n\r\npartial")
    parser.close()

    assert parser.next_event() is None
    with pytest.raises(ParserClosedError):
        parser.parse(b"more")
