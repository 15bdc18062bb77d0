"""
Exception hierarchy for ohttp_client.

Every error raised by the client inherits from OHTTPError. When an error
escapes an exchange, ``stage`` names the pipeline step that produced it and
``str(err)`` is prefixed with that stage.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Pipeline step that was being attempted when an exchange aborted."""

    KEY_FETCH = "key_fetch"
    ENCODE_REQUEST = "encode_request"
    ENCAPSULATE = "encapsulate"
    RELAY = "relay"
    DECAPSULATE = "decapsulate"
    DECODE_RESPONSE = "decode_response"


class OHTTPError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str, *, stage: Stage | None = None) -> None:
        self.message = message
        self.stage = stage
        super().__init__(message)

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        return f"{self.stage.value}: {self.message}"


class TransportError(OHTTPError):
    """Could not reach the key-config host or the gateway."""


class UpstreamStatusError(OHTTPError):
    """The key-config host or the gateway answered with a non-200 status.

    The status code and the raw response body are kept for diagnostics.
    """

    def __init__(
        self,
        what: str,
        status_code: int,
        body: bytes = b"",
        *,
        stage: Stage | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        text = body.decode("utf-8", errors="replace")
        super().__init__(f"{what} returned non-200 status: {status_code}, body={text}", stage=stage)


class ReadError(OHTTPError):
    """A response body was truncated or could not be read."""


class EncodeError(OHTTPError):
    """A request component cannot be represented in Binary HTTP.

    Possible causes:
    - Method or header name is not an HTTP token
    - Header value contains CR, LF or NUL
    - Target URL has no scheme or host
    """


class DecodeError(OHTTPError):
    """Malformed or truncated binary content.

    Raised for Binary HTTP messages and for key configurations.
    """


class CryptoError(OHTTPError):
    """Base exception for cryptographic-layer failures."""


class EncapsulationError(CryptoError):
    """Request could not be encapsulated.

    Possible causes:
    - Unsupported KEM, or no supported KDF/AEAD pair in the key config
    - Public key bytes are not a valid point for the KEM
    """


class DecapsulationError(CryptoError):
    """Encapsulated message could not be opened.

    Possible causes:
    - Authentication failure (wrong key, corrupted ciphertext)
    - Session context already consumed, or belongs to another request
    - Ciphertext too short for the suite in use
    """


class UnsupportedSuiteError(EncapsulationError):
    """HPKE algorithm combination not supported by this implementation."""

    def __init__(self, kem_id: int, kdf_id: int | None = None, aead_id: int | None = None) -> None:
        self.kem_id = kem_id
        self.kdf_id = kdf_id
        self.aead_id = aead_id
        parts = [f"kem=0x{kem_id:04x}"]
        if kdf_id is not None:
            parts.append(f"kdf=0x{kdf_id:04x}")
        if aead_id is not None:
            parts.append(f"aead=0x{aead_id:04x}")
        super().__init__(f"Unsupported suite: {', '.join(parts)}")
