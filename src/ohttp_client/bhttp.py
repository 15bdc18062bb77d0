"""
Binary HTTP message codec (RFC 9292).

Requests are always written in the known-length form:
┌─────────┬──────────────┬──────────┬─────────┬──────────┬─────────┐
│ Framing │ Control Data │ Headers  │ Content │ Trailers │ Padding │
│ (i) = 0 │ method,      │ (len)    │ (len)   │ (len)    │ (zeros) │
│         │ scheme,      │ fields   │ bytes   │ fields   │         │
│         │ authority,   │          │         │          │         │
│         │ path         │          │         │          │         │
└─────────┴──────────────┴──────────┴─────────┴──────────┴─────────┘

Responses are read in both known-length (1) and indeterminate-length (3)
forms, including any 1xx informational responses. A message may stop right
after its control data or after any later section; missing sections are
empty. Trailing padding must be all zero bytes.

All integers are QUIC variable-length integers (RFC 9000 §16).
"""

from __future__ import annotations

import re

import httpx

from ohttp_client.constants import (
    FRAMING_INDETERMINATE_REQUEST,
    FRAMING_INDETERMINATE_RESPONSE,
    FRAMING_KNOWN_LENGTH_REQUEST,
    FRAMING_KNOWN_LENGTH_RESPONSE,
    VARINT_MAX,
)
from ohttp_client.exceptions import DecodeError, EncodeError
from ohttp_client.messages import InformationalResponse, RequestDescriptor, ResponseDescriptor

__all__ = [
    "decode_request",
    "decode_response",
    "decode_varint",
    "encode_request",
    "encode_response",
    "encode_varint",
]

_TOKEN = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_FORBIDDEN_VALUE_BYTES = re.compile(rb"[\r\n\x00]")
_FORBIDDEN_TARGET_BYTES = re.compile(rb"[\x00-\x20\x7f]")


# =============================================================================
# VARIABLE-LENGTH INTEGERS
# =============================================================================


def encode_varint(value: int) -> bytes:
    """
    Encode a QUIC variable-length integer.

    Raises:
        ValueError: If value is negative or exceeds 2^62 - 1
    """
    if value < 0 or value > VARINT_MAX:
        raise ValueError(f"Value out of varint range: {value}")
    if value < 1 << 6:
        return value.to_bytes(1, "big")
    if value < 1 << 14:
        return (value | 0x4000).to_bytes(2, "big")
    if value < 1 << 30:
        return (value | 0x8000_0000).to_bytes(4, "big")
    return (value | 0xC000_0000_0000_0000).to_bytes(8, "big")


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode a QUIC variable-length integer at ``offset``.

    Returns:
        Tuple of (value, offset after the integer)

    Raises:
        DecodeError: If the integer is truncated
    """
    if offset >= len(data):
        raise DecodeError("Truncated variable-length integer")
    first = data[offset]
    length = 1 << (first >> 6)
    end = offset + length
    if end > len(data):
        raise DecodeError("Truncated variable-length integer")
    value = first & 0x3F
    for byte in data[offset + 1 : end]:
        value = (value << 8) | byte
    return value, end


class _Reader:
    """Cursor over a binary message."""

    __slots__ = ("_data", "pos")

    def __init__(self, data: bytes) -> None:
        self._data = data
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self._data)

    def varint(self) -> int:
        value, self.pos = decode_varint(self._data, self.pos)
        return value

    def read(self, length: int) -> bytes:
        end = self.pos + length
        if end > len(self._data):
            raise DecodeError(f"Truncated message: need {length} bytes, have {len(self._data) - self.pos}")
        chunk = bytes(self._data[self.pos : end])
        self.pos = end
        return chunk

    def length_prefixed(self) -> bytes:
        return self.read(self.varint())

    def check_padding(self) -> None:
        rest = self._data[self.pos :]
        if any(rest):
            raise DecodeError("Non-zero bytes after end of message")
        self.pos = len(self._data)


# =============================================================================
# FIELD SECTIONS
# =============================================================================


def _lp(data: bytes) -> bytes:
    return encode_varint(len(data)) + data


def _encode_fields(fields: httpx.Headers) -> bytes:
    section = bytearray()
    for name, value in fields.raw:
        if not _TOKEN.match(name):
            raise EncodeError(f"Invalid field name: {name!r}")
        if _FORBIDDEN_VALUE_BYTES.search(value):
            raise EncodeError(f"Invalid value for field {name.decode('ascii')!r}")
        section += _lp(name.lower())
        section += _lp(value)
    return _lp(bytes(section))


def _field_line(name: bytes, value: bytes) -> tuple[bytes, bytes]:
    if not name:
        raise DecodeError("Empty field name")
    return name, value


def _decode_known_fields(reader: _Reader) -> httpx.Headers:
    section = _Reader(reader.length_prefixed())
    lines: list[tuple[bytes, bytes]] = []
    while not section.at_end():
        name = section.length_prefixed()
        value = section.length_prefixed()
        lines.append(_field_line(name, value))
    return httpx.Headers(lines)


def _decode_indeterminate_fields(reader: _Reader) -> httpx.Headers:
    lines: list[tuple[bytes, bytes]] = []
    while True:
        name_length = reader.varint()
        if name_length == 0:
            return httpx.Headers(lines)
        name = reader.read(name_length)
        lines.append(_field_line(name, reader.length_prefixed()))


def _decode_indeterminate_content(reader: _Reader) -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk_length = reader.varint()
        if chunk_length == 0:
            return b"".join(chunks)
        chunks.append(reader.read(chunk_length))


def _decode_tail(reader: _Reader, indeterminate: bool) -> tuple[bytes, httpx.Headers]:
    """Read content and trailers, either of which may be truncated away."""
    body = b""
    trailers = httpx.Headers()
    if not reader.at_end():
        body = _decode_indeterminate_content(reader) if indeterminate else reader.length_prefixed()
    if not reader.at_end():
        trailers = _decode_fields(reader, indeterminate)
    reader.check_padding()
    return body, trailers


def _decode_fields(reader: _Reader, indeterminate: bool) -> httpx.Headers:
    return _decode_indeterminate_fields(reader) if indeterminate else _decode_known_fields(reader)


# =============================================================================
# REQUESTS
# =============================================================================


def _target_component(value: str, what: str) -> bytes:
    try:
        encoded = value.encode("ascii")
    except UnicodeEncodeError as e:
        raise EncodeError(f"Non-ASCII {what}: {value!r}") from e
    if _FORBIDDEN_TARGET_BYTES.search(encoded):
        raise EncodeError(f"Invalid character in {what}: {value!r}")
    return encoded


def encode_request(request: RequestDescriptor) -> bytes:
    """
    Encode a request as a known-length Binary HTTP message.

    Field names are written lowercase; their order and values are kept.

    Raises:
        EncodeError: If any component is not representable
    """
    method = _target_component(request.method, "method")
    if not _TOKEN.match(method):
        raise EncodeError(f"Invalid method: {request.method!r}")

    try:
        scheme, authority, path = request.scheme, request.authority, request.path
    except (httpx.InvalidURL, ValueError) as e:
        raise EncodeError(f"Invalid target URL {request.url!r}: {e}") from e
    if not scheme or not authority:
        raise EncodeError(f"Target URL must include scheme and host: {request.url!r}")

    return b"".join(
        [
            encode_varint(FRAMING_KNOWN_LENGTH_REQUEST),
            _lp(method),
            _lp(_target_component(scheme, "scheme")),
            _lp(_target_component(authority, "authority")),
            _lp(_target_component(path, "path")),
            _encode_fields(request.headers),
            _lp(request.body),
            _encode_fields(request.trailers),
        ]
    )


def decode_request(data: bytes) -> RequestDescriptor:
    """
    Decode a known- or indeterminate-length Binary HTTP request.

    Raises:
        DecodeError: If the message is malformed or truncated
    """
    reader = _Reader(data)
    framing = reader.varint()
    if framing not in (FRAMING_KNOWN_LENGTH_REQUEST, FRAMING_INDETERMINATE_REQUEST):
        raise DecodeError(f"Not a request: framing indicator {framing}")
    indeterminate = framing == FRAMING_INDETERMINATE_REQUEST

    try:
        method, scheme, authority, path = (reader.length_prefixed().decode("ascii") for _ in range(4))
    except UnicodeDecodeError as e:
        raise DecodeError("Non-ASCII request control data") from e

    headers = _decode_fields(reader, indeterminate) if not reader.at_end() else httpx.Headers()
    body, trailers = _decode_tail(reader, indeterminate)

    if not authority:
        authority = headers.get("host", "")
    return RequestDescriptor(
        method=method,
        url=f"{scheme}://{authority}{path}",
        headers=headers,
        body=body,
        trailers=trailers,
    )


# =============================================================================
# RESPONSES
# =============================================================================


def _check_status(status: int, allowed: range) -> int:
    if status not in allowed:
        raise EncodeError(f"Invalid status code: {status}")
    return status


def encode_response(response: ResponseDescriptor) -> bytes:
    """
    Encode a response as a known-length Binary HTTP message.

    Raises:
        EncodeError: If a status code or field is not representable
    """
    parts = [encode_varint(FRAMING_KNOWN_LENGTH_RESPONSE)]
    for interim in response.informational:
        parts.append(encode_varint(_check_status(interim.status, range(100, 200))))
        parts.append(_encode_fields(interim.headers))
    parts.append(encode_varint(_check_status(response.status, range(200, 600))))
    parts.append(_encode_fields(response.headers))
    parts.append(_lp(response.body))
    parts.append(_encode_fields(response.trailers))
    return b"".join(parts)


def decode_response(data: bytes) -> ResponseDescriptor:
    """
    Decode a known- or indeterminate-length Binary HTTP response.

    Raises:
        DecodeError: If the message is malformed or truncated
    """
    reader = _Reader(data)
    framing = reader.varint()
    if framing not in (FRAMING_KNOWN_LENGTH_RESPONSE, FRAMING_INDETERMINATE_RESPONSE):
        raise DecodeError(f"Not a response: framing indicator {framing}")
    indeterminate = framing == FRAMING_INDETERMINATE_RESPONSE

    informational: list[InformationalResponse] = []
    while True:
        status = reader.varint()
        if 100 <= status < 200:
            informational.append(InformationalResponse(status, _decode_fields(reader, indeterminate)))
            continue
        if not 200 <= status < 600:
            raise DecodeError(f"Invalid status code: {status}")
        break

    headers = _decode_fields(reader, indeterminate) if not reader.at_end() else httpx.Headers()
    body, trailers = _decode_tail(reader, indeterminate)
    return ResponseDescriptor(
        status=status,
        headers=headers,
        body=body,
        trailers=trailers,
        informational=tuple(informational),
    )
