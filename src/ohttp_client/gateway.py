"""
Gateway side of Oblivious HTTP.

Holds private key configurations, opens encapsulated requests and seals the
matching responses. Useful for local gateways and for exercising the client
against a cooperating peer.

Usage:
    key_config = KeyConfig.generate(key_id=1)
    gateway = Gateway([key_config])
    keys_body = gateway.key_configs_body()     # serve as application/ohttp-keys
    reply = gateway.handle(request_body, app)  # app: RequestDescriptor -> ResponseDescriptor
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from ohttp_client._logging import get_logger
from ohttp_client.bhttp import decode_request, encode_response
from ohttp_client.constants import (
    DEFAULT_AEAD_ID,
    DEFAULT_KDF_ID,
    DEFAULT_KEM_ID,
    REQUEST_HEADER_SIZE,
    RESPONSE_EXPORT_LABEL,
)
from ohttp_client.encapsulation import (
    SessionState,
    derive_response_keys,
    request_info,
    response_nonce_size,
)
from ohttp_client.exceptions import DecapsulationError, EncapsulationError, UnsupportedSuiteError
from ohttp_client.hpke import CipherSuite, RecipientContext, generate_key_pair, setup_recipient_base
from ohttp_client.keyconfig import PublicKeyConfig, SymmetricSuite, serialize_key_configs
from ohttp_client.messages import RequestDescriptor, ResponseDescriptor

__all__ = [
    "Gateway",
    "KeyConfig",
    "RequestHandler",
    "ResponseContext",
]

_logger = get_logger(__name__)

RequestHandler = Callable[[RequestDescriptor], ResponseDescriptor]


@dataclass(frozen=True)
class KeyConfig:
    """A key configuration including its private key."""

    key_id: int
    kem_id: int
    private_key: bytes
    public_key: bytes
    suites: tuple[SymmetricSuite, ...]

    @classmethod
    def generate(
        cls,
        key_id: int = 0,
        kem_id: int = DEFAULT_KEM_ID,
        suites: Iterable[SymmetricSuite] | None = None,
    ) -> KeyConfig:
        """Create a fresh key configuration."""
        sk, pk = generate_key_pair(kem_id)
        return cls(
            key_id=key_id,
            kem_id=kem_id,
            private_key=sk,
            public_key=pk,
            suites=tuple(suites) if suites is not None else (SymmetricSuite(DEFAULT_KDF_ID, DEFAULT_AEAD_ID),),
        )

    @property
    def public(self) -> PublicKeyConfig:
        return PublicKeyConfig(
            key_id=self.key_id,
            kem_id=self.kem_id,
            public_key=self.public_key,
            suites=self.suites,
        )


class ResponseContext:
    """Gateway state for sealing the response to one request. Single use."""

    __slots__ = ("_enc", "_recipient", "_state")

    def __init__(self, recipient: RecipientContext, enc: bytes) -> None:
        self._recipient = recipient
        self._enc = enc
        self._state = SessionState.ACTIVE

    def encapsulate_response(self, response: bytes) -> bytes:
        """
        Seal a Binary HTTP response for the client.

        Raises:
            EncapsulationError: If this context was already used
        """
        if self._state is SessionState.CONSUMED:
            raise EncapsulationError("Response context already used")
        self._state = SessionState.CONSUMED

        suite = self._recipient.suite
        nonce_size = response_nonce_size(suite)
        response_nonce = secrets.token_bytes(nonce_size)
        secret = self._recipient.export(RESPONSE_EXPORT_LABEL, nonce_size)
        key, nonce = derive_response_keys(suite, secret, self._enc, response_nonce)
        return response_nonce + suite.new_cipher(key).encrypt(nonce, response, b"")


class Gateway:
    """Opens encapsulated requests for a set of key configurations."""

    def __init__(self, key_configs: Iterable[KeyConfig]) -> None:
        self._configs: dict[int, KeyConfig] = {}
        for config in key_configs:
            if config.key_id in self._configs:
                raise ValueError(f"Duplicate key id: {config.key_id}")
            self._configs[config.key_id] = config

    def key_configs_body(self) -> bytes:
        """Public key configs as an ``application/ohttp-keys`` body."""
        return serialize_key_configs([c.public for c in self._configs.values()])

    def decapsulate_request(self, data: bytes) -> tuple[bytes, ResponseContext]:
        """
        Open an encapsulated request.

        Returns:
            Tuple of (binary_request, response_context)

        Raises:
            DecapsulationError: Unknown key id, suite mismatch, truncation or authentication failure
        """
        if len(data) < REQUEST_HEADER_SIZE:
            raise DecapsulationError(f"Encapsulated request too short: {len(data)} bytes")

        header = data[:REQUEST_HEADER_SIZE]
        key_id = header[0]
        kem_id = int.from_bytes(header[1:3], "big")
        kdf_id = int.from_bytes(header[3:5], "big")
        aead_id = int.from_bytes(header[5:7], "big")

        config = self._configs.get(key_id)
        if config is None:
            raise DecapsulationError(f"Unknown key id: {key_id}")
        if kem_id != config.kem_id or SymmetricSuite(kdf_id, aead_id) not in config.suites:
            raise DecapsulationError(
                f"Suite not offered by key {key_id}: kem=0x{kem_id:04x} kdf=0x{kdf_id:04x} aead=0x{aead_id:04x}"
            )
        try:
            suite = CipherSuite.from_ids(kem_id, kdf_id, aead_id)
        except UnsupportedSuiteError as e:
            raise DecapsulationError(str(e)) from e

        enc_end = REQUEST_HEADER_SIZE + suite.kem.n_enc
        if len(data) < enc_end + suite.aead.n_t:
            raise DecapsulationError(f"Encapsulated request too short: {len(data)} bytes")

        enc = data[REQUEST_HEADER_SIZE:enc_end]
        recipient = setup_recipient_base(suite, enc, config.private_key, request_info(header))
        plaintext = recipient.open(b"", data[enc_end:])
        _logger.debug("Request decapsulated: key_id=%d size=%d", key_id, len(plaintext))
        return plaintext, ResponseContext(recipient, enc)

    def handle(self, data: bytes, handler: RequestHandler) -> bytes:
        """Open a request, run ``handler`` on it and return the sealed response."""
        plaintext, context = self.decapsulate_request(data)
        request = decode_request(plaintext)
        _logger.debug("Forwarding request: method=%s url=%s", request.method, request.url)
        response = handler(request)
        return context.encapsulate_response(encode_response(response))
