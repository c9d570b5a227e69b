"""Helpers for the few header grammars a multipart decoder needs.

Option parsing follows the `token` / `quoted-string` rules of RFC 7230 and
accepts RFC 2231 extended values (`filename*=UTF-8''na%C3%AFve.txt`).
"""

from __future__ import annotations

import re
from urllib.parse import unquote

from bodyparser.exceptions import ConfigurationError

MAX_BOUNDARY_LENGTH = 70

_token = r"[a-zA-Z0-9-!#$%&'*+.^_`|~]+"
# A token or quoted-string (simple qs | token | slow qs)
_value = r'"[^\\"]*"|%s|"(?:\\.|[^"])*"' % _token
_re_option = re.compile(r";\s*(%s)\s*=\s*(%s)" % (_token, _value))


def validate_boundary(boundary: bytes | str) -> bytes:
    """Return `boundary` as bytes, or raise `ConfigurationError` if it is unusable."""
    if isinstance(boundary, str):
        try:
            boundary = boundary.encode("ascii")
        except UnicodeEncodeError:
            raise ConfigurationError("The boundary should only contain ASCII characters.") from None
    boundary = bytes(boundary)

    if not boundary:
        raise ConfigurationError("The boundary should not be empty.")
    if len(boundary) > MAX_BOUNDARY_LENGTH:
        raise ConfigurationError(f"The boundary length should not surpass {MAX_BOUNDARY_LENGTH} bytes.")
    if any(byte < 0x20 or byte > 0x7E for byte in boundary):
        raise ConfigurationError("The boundary should only contain printable ASCII characters.")
    if boundary.endswith(b" "):
        raise ConfigurationError("The boundary should not end with a space.")
    return boundary


def header_unquote(value: str, filename: bool = False) -> str:
    if len(value) > 1 and value[0] == value[-1] == '"':
        value = value[1:-1]
        value = value.replace("\\\\", "\\").replace('\\"', '"')

    # Old browsers send the full client-side path
    if filename and (value[1:3] == ":\\" or value[:2] == "\\\\"):
        value = value.split("\\")[-1]
    return value


def _decode_extended(value: str) -> str | None:
    # charset'language'percent-encoded-value
    charset, sep, rest = value.partition("'")
    if not sep:
        return None
    _, sep, encoded = rest.partition("'")
    if not sep:
        return None
    try:
        return unquote(encoded, encoding=charset or "utf-8", errors="strict")
    except (LookupError, UnicodeDecodeError):
        return None


def parse_options_header(header: str) -> tuple[str, dict[str, str]]:
    """Split a header like `form-data; name="file"` into its value and options.

    The value is lower-cased; option names are lower-cased and option values
    unquoted. An extended `key*` option wins over a plain `key` option.
    """
    index = header.find(";")
    if index < 0:
        return header.strip().lower(), {}

    options: dict[str, str] = {}
    extended: dict[str, str] = {}
    for key, value in _re_option.findall(header, index):
        key = key.lower()
        if key.endswith("*"):
            decoded = _decode_extended(value.strip('"'))
            if decoded is not None:
                extended[key[:-1]] = header_unquote(decoded, key == "filename*")
            continue
        options[key] = header_unquote(value, key == "filename")

    options.update(extended)
    return header[:index].strip().lower(), options


def boundary_from_content_type(content_type: str) -> bytes | None:
    """Return the boundary of a `multipart/*` Content-Type value, if it has one."""
    media_type, options = parse_options_header(content_type)
    if not media_type.startswith("multipart/"):
        return None
    boundary = options.get("boundary")
    if not boundary:
        return None
    return validate_boundary(boundary)
