"""
OHTTP key configuration wire format (RFC 9458 §3).

Key config layout:
┌────────┬────────┬────────────┬────────────┬──────────────────────────┐
│ Key ID │ KEM ID │ Public Key │ Suites Len │ (KDF ID, AEAD ID) ...    │
│  (1B)  │  (2B)  │  (Npk B)   │    (2B)    │ (4B each)                │
└────────┴────────┴────────────┴────────────┴──────────────────────────┘

Gateways publish either one config as-is, or an ``application/ohttp-keys``
list where each config is prefixed by a 2-byte length.
"""

from __future__ import annotations

from dataclasses import dataclass

from ohttp_client._logging import get_logger
from ohttp_client.constants import (
    KEM_PUBLIC_KEY_SIZES,
    KEY_CONFIG_LENGTH_PREFIX_SIZE,
    KEY_CONFIG_SUITE_SIZE,
)
from ohttp_client.exceptions import DecodeError
from ohttp_client.hpke import CipherSuite

__all__ = [
    "PublicKeyConfig",
    "SymmetricSuite",
    "parse_key_configs",
    "parse_public_config",
    "serialize_key_configs",
]

_logger = get_logger(__name__)


@dataclass(frozen=True)
class SymmetricSuite:
    """One (KDF, AEAD) pair offered by a key config."""

    kdf_id: int
    aead_id: int


@dataclass(frozen=True)
class PublicKeyConfig:
    """A gateway's published key configuration."""

    key_id: int
    kem_id: int
    public_key: bytes
    suites: tuple[SymmetricSuite, ...]

    def serialize(self) -> bytes:
        """Encode as a single key config (no length prefix)."""
        suites = b"".join(
            s.kdf_id.to_bytes(2, "big") + s.aead_id.to_bytes(2, "big") for s in self.suites
        )
        return (
            self.key_id.to_bytes(1, "big")
            + self.kem_id.to_bytes(2, "big")
            + self.public_key
            + len(suites).to_bytes(2, "big")
            + suites
        )

    def supported_suites(self) -> list[SymmetricSuite]:
        """Suites usable with this implementation, in the config's order."""
        if not CipherSuite.supports(self.kem_id):
            return []
        return [s for s in self.suites if CipherSuite.supports(self.kem_id, s.kdf_id, s.aead_id)]


def _parse_one(data: bytes, offset: int = 0) -> tuple[PublicKeyConfig, int]:
    """Parse one key config at ``offset``; return it and the offset after it."""
    if len(data) - offset < 3:
        raise DecodeError(f"Key config too short: {len(data) - offset} bytes")

    key_id = data[offset]
    kem_id = int.from_bytes(data[offset + 1 : offset + 3], "big")
    n_pk = KEM_PUBLIC_KEY_SIZES.get(kem_id)
    if n_pk is None:
        raise DecodeError(f"Unknown KEM in key config: 0x{kem_id:04x}")

    pos = offset + 3
    if len(data) < pos + n_pk + 2:
        raise DecodeError("Key config truncated in public key")
    public_key = bytes(data[pos : pos + n_pk])
    pos += n_pk

    suites_len = int.from_bytes(data[pos : pos + 2], "big")
    pos += 2
    if suites_len == 0 or suites_len % KEY_CONFIG_SUITE_SIZE:
        raise DecodeError(f"Invalid symmetric algorithms length: {suites_len}")
    if len(data) < pos + suites_len:
        raise DecodeError("Key config truncated in symmetric algorithms")

    suites = tuple(
        SymmetricSuite(
            kdf_id=int.from_bytes(data[i : i + 2], "big"),
            aead_id=int.from_bytes(data[i + 2 : i + 4], "big"),
        )
        for i in range(pos, pos + suites_len, KEY_CONFIG_SUITE_SIZE)
    )
    pos += suites_len
    return PublicKeyConfig(key_id=key_id, kem_id=kem_id, public_key=public_key, suites=suites), pos


def parse_key_configs(data: bytes) -> list[PublicKeyConfig]:
    """
    Parse an ``application/ohttp-keys`` body.

    Raises:
        DecodeError: If any length prefix or config is malformed
    """
    configs: list[PublicKeyConfig] = []
    pos = 0
    while pos < len(data):
        if len(data) - pos < KEY_CONFIG_LENGTH_PREFIX_SIZE:
            raise DecodeError("Truncated key config length prefix")
        length = int.from_bytes(data[pos : pos + KEY_CONFIG_LENGTH_PREFIX_SIZE], "big")
        pos += KEY_CONFIG_LENGTH_PREFIX_SIZE
        end = pos + length
        if end > len(data):
            raise DecodeError(f"Key config length {length} exceeds remaining {len(data) - pos} bytes")
        config, consumed = _parse_one(data[:end], pos)
        if consumed != end:
            raise DecodeError(f"Key config has {end - consumed} trailing bytes")
        configs.append(config)
        pos = end
    if not configs:
        raise DecodeError("No key configs present")
    return configs


def serialize_key_configs(configs: list[PublicKeyConfig]) -> bytes:
    """Encode configs as an ``application/ohttp-keys`` body."""
    out = bytearray()
    for config in configs:
        encoded = config.serialize()
        out += len(encoded).to_bytes(KEY_CONFIG_LENGTH_PREFIX_SIZE, "big")
        out += encoded
    return bytes(out)


def parse_public_config(data: bytes) -> PublicKeyConfig:
    """
    Parse a fetched key configuration body.

    Accepts a single bare config, or a length-prefixed list from which the
    first config with a supported KEM and suite is chosen.

    Raises:
        DecodeError: If the body is neither format
    """
    try:
        config, consumed = _parse_one(data)
    except DecodeError as e:
        reason = e.message
    else:
        if consumed == len(data):
            return config
        reason = f"{len(data) - consumed} trailing bytes"

    try:
        configs = parse_key_configs(data)
    except DecodeError as e:
        raise DecodeError(f"Malformed key config: {reason}") from e

    _logger.debug("Key config list parsed: count=%d", len(configs))
    for candidate in configs:
        if candidate.supported_suites():
            return candidate
    # Nothing usable; the encapsulation stage reports the unsupported suite
    return configs[0]
