"""
OHTTP request/response encapsulation (RFC 9458 §4).

Encapsulated request:
┌────────┬────────┬────────┬─────────┬─────────┬────────────┐
│ Key ID │ KEM ID │ KDF ID │ AEAD ID │   enc   │ Ciphertext │
│  (1B)  │  (2B)  │  (2B)  │  (2B)   │ (Nenc)  │  (N+Nt)    │
└────────┴────────┴────────┴─────────┴─────────┴────────────┘

Encapsulated response:
┌──────────────────────┬────────────┐
│ Response Nonce       │ Ciphertext │
│ (max(Nn, Nk))        │  (N+Nt)    │
└──────────────────────┴────────────┘

The orchestrator only talks to ``EncapsulationEngine``; any engine honoring
that contract can replace ``HPKEEncapsulation``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from cryptography.exceptions import InvalidTag

from ohttp_client._logging import get_logger
from ohttp_client.constants import (
    REQUEST_INFO_LABEL,
    RESPONSE_EXPORT_LABEL,
    RESPONSE_KEY_LABEL,
    RESPONSE_NONCE_LABEL,
)
from ohttp_client.exceptions import DecapsulationError, EncapsulationError, UnsupportedSuiteError
from ohttp_client.hpke import CipherSuite, SenderContext, setup_sender_base
from ohttp_client.keyconfig import PublicKeyConfig

__all__ = [
    "EncapsulationEngine",
    "HPKEEncapsulation",
    "SessionContext",
    "SessionState",
    "build_request_header",
    "derive_response_keys",
    "request_info",
    "response_nonce_size",
]

_logger = get_logger(__name__)


class SessionState(Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"


class SessionContext:
    """
    Engine state linking one encapsulated request to its response.

    Single use: ``consume()`` hands the state over exactly once and flips the
    tag to CONSUMED; any later call raises DecapsulationError.
    """

    __slots__ = ("_payload", "_state")

    def __init__(self, payload: Any) -> None:
        self._payload = payload
        self._state = SessionState.ACTIVE

    @property
    def state(self) -> SessionState:
        return self._state

    def consume(self) -> Any:
        """
        Take the engine state out of the context.

        Raises:
            DecapsulationError: If the context was already consumed
        """
        if self._state is SessionState.CONSUMED:
            raise DecapsulationError("Session context already consumed")
        self._state = SessionState.CONSUMED
        payload, self._payload = self._payload, None
        return payload


class EncapsulationEngine(Protocol):
    """Contract between the orchestrator and the cryptographic engine."""

    def open_request(self, config: PublicKeyConfig, request: bytes) -> tuple[bytes, SessionContext]:
        """Encapsulate ``request`` for ``config`` with fresh randomness."""
        ...

    def close_response(self, context: SessionContext, response: bytes) -> bytes:
        """Consume ``context`` and open the matching encapsulated response."""
        ...


# =============================================================================
# Shared derivations (client and gateway)
# =============================================================================


def build_request_header(key_id: int, suite: CipherSuite) -> bytes:
    return (
        key_id.to_bytes(1, "big")
        + suite.kem.kem_id.to_bytes(2, "big")
        + suite.kdf.kdf_id.to_bytes(2, "big")
        + suite.aead.aead_id.to_bytes(2, "big")
    )


def request_info(header: bytes) -> bytes:
    return REQUEST_INFO_LABEL + b"\x00" + header


def response_nonce_size(suite: CipherSuite) -> int:
    return max(suite.aead.n_n, suite.aead.n_k)


def derive_response_keys(suite: CipherSuite, secret: bytes, enc: bytes, response_nonce: bytes) -> tuple[bytes, bytes]:
    """Derive the response AEAD key and nonce (RFC 9458 §4.4)."""
    prk = suite.kdf.extract(enc + response_nonce, secret)
    key = suite.kdf.expand(prk, RESPONSE_KEY_LABEL, suite.aead.n_k)
    nonce = suite.kdf.expand(prk, RESPONSE_NONCE_LABEL, suite.aead.n_n)
    return key, nonce


# =============================================================================
# Default engine
# =============================================================================


@dataclass(frozen=True)
class _HPKESession:
    sender: SenderContext


class HPKEEncapsulation:
    """
    Encapsulation engine built on this package's HPKE implementation.

    Uses the first symmetric suite of the key config that is supported.
    """

    def open_request(self, config: PublicKeyConfig, request: bytes) -> tuple[bytes, SessionContext]:
        """
        Encapsulate a Binary HTTP request.

        Returns:
            Tuple of (encapsulated_request, session_context)

        Raises:
            EncapsulationError: If the key config cannot be used
        """
        if not CipherSuite.supports(config.kem_id):
            raise UnsupportedSuiteError(config.kem_id)
        suites = config.supported_suites()
        if not suites:
            offered = ", ".join(f"(0x{s.kdf_id:04x}, 0x{s.aead_id:04x})" for s in config.suites)
            raise EncapsulationError(f"No supported symmetric suite in key config: {offered}")

        chosen = suites[0]
        suite = CipherSuite.from_ids(config.kem_id, chosen.kdf_id, chosen.aead_id)
        header = build_request_header(config.key_id, suite)
        sender = setup_sender_base(suite, config.public_key, request_info(header))
        ciphertext = sender.seal(b"", request)

        _logger.debug(
            "Request encapsulated: key_id=%d kem=0x%04x kdf=0x%04x aead=0x%04x size=%d",
            config.key_id,
            config.kem_id,
            chosen.kdf_id,
            chosen.aead_id,
            len(request),
        )
        return header + sender.enc + ciphertext, SessionContext(_HPKESession(sender))

    def close_response(self, context: SessionContext, response: bytes) -> bytes:
        """
        Open an encapsulated response.

        Raises:
            DecapsulationError: On reuse, foreign context, truncation or authentication failure
        """
        session = context.consume()
        if not isinstance(session, _HPKESession):
            raise DecapsulationError("Session context was not created by this engine")

        sender = session.sender
        suite = sender.suite
        nonce_size = response_nonce_size(suite)
        if len(response) < nonce_size + suite.aead.n_t:
            raise DecapsulationError(
                f"Encapsulated response too short: {len(response)} bytes (minimum {nonce_size + suite.aead.n_t})"
            )

        response_nonce = response[:nonce_size]
        secret = sender.export(RESPONSE_EXPORT_LABEL, nonce_size)
        key, nonce = derive_response_keys(suite, secret, sender.enc, response_nonce)
        try:
            plaintext = suite.new_cipher(key).decrypt(nonce, response[nonce_size:], b"")
        except InvalidTag as e:
            raise DecapsulationError("Response authentication failed") from e

        _logger.debug("Response decapsulated: size=%d", len(plaintext))
        return plaintext
