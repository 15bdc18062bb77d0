"""
Protocol constants for Oblivious HTTP.

References:
- RFC 9458 (Oblivious HTTP)
- RFC 9292 (Binary Representation of HTTP Messages)
- RFC 9180 (Hybrid Public Key Encryption)
"""

from enum import IntEnum

# =============================================================================
# Media types (RFC 9458 §9)
# =============================================================================

CONTENT_TYPE_OHTTP_REQUEST = "message/ohttp-req"
CONTENT_TYPE_OHTTP_RESPONSE = "message/ohttp-res"
CONTENT_TYPE_OHTTP_KEYS = "application/ohttp-keys"

# =============================================================================
# HPKE algorithm identifiers (RFC 9180 §7)
# =============================================================================


class KemId(IntEnum):
    """HPKE Key Encapsulation Mechanism identifiers."""

    DHKEM_P256_HKDF_SHA256 = 0x0010
    DHKEM_P384_HKDF_SHA384 = 0x0011
    DHKEM_P521_HKDF_SHA512 = 0x0012
    DHKEM_X25519_HKDF_SHA256 = 0x0020
    DHKEM_X448_HKDF_SHA512 = 0x0021


class KdfId(IntEnum):
    """HPKE Key Derivation Function identifiers."""

    HKDF_SHA256 = 0x0001
    HKDF_SHA384 = 0x0002
    HKDF_SHA512 = 0x0003


class AeadId(IntEnum):
    """HPKE AEAD identifiers."""

    AES_128_GCM = 0x0001
    AES_256_GCM = 0x0002
    CHACHA20_POLY1305 = 0x0003


# Serialized public key length (Npk) per KEM, needed to parse key configs
KEM_PUBLIC_KEY_SIZES: dict[int, int] = {
    KemId.DHKEM_P256_HKDF_SHA256: 65,
    KemId.DHKEM_P384_HKDF_SHA384: 97,
    KemId.DHKEM_P521_HKDF_SHA512: 133,
    KemId.DHKEM_X25519_HKDF_SHA256: 32,
    KemId.DHKEM_X448_HKDF_SHA512: 56,
}

# Defaults used when generating gateway key configs
DEFAULT_KEM_ID = KemId.DHKEM_X25519_HKDF_SHA256
DEFAULT_KDF_ID = KdfId.HKDF_SHA256
DEFAULT_AEAD_ID = AeadId.AES_128_GCM

# =============================================================================
# HPKE (RFC 9180)
# =============================================================================

HPKE_VERSION_LABEL = b"HPKE-v1"
MODE_BASE = 0x00
AEAD_TAG_SIZE = 16
# Sequence numbers are bounded by the nonce size; 2^64 is far beyond any exchange
HPKE_MAX_SEQUENCE = (1 << 64) - 1

# =============================================================================
# OHTTP encapsulation (RFC 9458 §4)
# =============================================================================

REQUEST_INFO_LABEL = b"message/bhttp request"
RESPONSE_EXPORT_LABEL = b"message/bhttp response"
RESPONSE_KEY_LABEL = b"key"
RESPONSE_NONCE_LABEL = b"nonce"

# key_id(1) + kem_id(2) + kdf_id(2) + aead_id(2)
REQUEST_HEADER_SIZE = 7
KEY_CONFIG_SUITE_SIZE = 4
KEY_CONFIG_LENGTH_PREFIX_SIZE = 2

# =============================================================================
# Binary HTTP (RFC 9292)
# =============================================================================

FRAMING_KNOWN_LENGTH_REQUEST = 0
FRAMING_KNOWN_LENGTH_RESPONSE = 1
FRAMING_INDETERMINATE_REQUEST = 2
FRAMING_INDETERMINATE_RESPONSE = 3

VARINT_MAX = (1 << 62) - 1

# =============================================================================
# Client defaults
# =============================================================================

DEFAULT_TIMEOUT = 30.0

ENV_GATEWAY_URL = "OHTTP_GATEWAY_URL"
ENV_KEYS_URL = "OHTTP_KEYS_URL"
ENV_VERBOSE = "OHTTP_VERBOSE"
ENV_TIMEOUT = "OHTTP_TIMEOUT"
