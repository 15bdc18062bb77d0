"""
RFC 9180 Hybrid Public Key Encryption, base mode.

Only the pieces Oblivious HTTP needs: single-shot sender/recipient setup,
seal/open with a sequence-numbered nonce, and the secret export interface.

Supported algorithms:
- KEM: DHKEM(X25519, HKDF-SHA256), DHKEM(P-256, HKDF-SHA256)
- KDF: HKDF-SHA256, HKDF-SHA384, HKDF-SHA512
- AEAD: AES-128-GCM, AES-256-GCM, ChaCha20-Poly1305

Usage:
    suite = CipherSuite.from_ids(KemId.DHKEM_X25519_HKDF_SHA256, KdfId.HKDF_SHA256, AeadId.AES_128_GCM)
    sender = setup_sender_base(suite, pk_r, info)
    ct = sender.seal(b"", plaintext)
    recipient = setup_recipient_base(suite, sender.enc, sk_r, info)
    assert recipient.open(b"", ct) == plaintext
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import ec, x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from ohttp_client.constants import (
    AEAD_TAG_SIZE,
    HPKE_MAX_SEQUENCE,
    HPKE_VERSION_LABEL,
    MODE_BASE,
    AeadId,
    KdfId,
    KemId,
)
from ohttp_client.exceptions import DecapsulationError, EncapsulationError, UnsupportedSuiteError

__all__ = [
    "CipherSuite",
    "HPKEContext",
    "Kdf",
    "RecipientContext",
    "SenderContext",
    "generate_key_pair",
    "public_key_from_private",
    "setup_recipient_base",
    "setup_sender_base",
]


# =============================================================================
# KDF
# =============================================================================


@dataclass(frozen=True)
class Kdf:
    """HKDF instantiated with one hash function."""

    kdf_id: int
    hash_cls: type[hashes.HashAlgorithm]

    @property
    def n_h(self) -> int:
        return self.hash_cls.digest_size  # type: ignore[return-value]

    def extract(self, salt: bytes, ikm: bytes) -> bytes:
        # RFC 5869: an absent salt is HashLen zero bytes
        h = hmac.HMAC(salt or b"\x00" * self.n_h, self.hash_cls())
        h.update(ikm)
        return h.finalize()

    def expand(self, prk: bytes, info: bytes, length: int) -> bytes:
        return HKDFExpand(algorithm=self.hash_cls(), length=length, info=info).derive(prk)

    def labeled_extract(self, suite_id: bytes, salt: bytes, label: bytes, ikm: bytes) -> bytes:
        return self.extract(salt, HPKE_VERSION_LABEL + suite_id + label + ikm)

    def labeled_expand(self, suite_id: bytes, prk: bytes, label: bytes, info: bytes, length: int) -> bytes:
        labeled_info = length.to_bytes(2, "big") + HPKE_VERSION_LABEL + suite_id + label + info
        return self.expand(prk, labeled_info, length)


_KDFS: dict[int, Kdf] = {
    KdfId.HKDF_SHA256: Kdf(KdfId.HKDF_SHA256, hashes.SHA256),
    KdfId.HKDF_SHA384: Kdf(KdfId.HKDF_SHA384, hashes.SHA384),
    KdfId.HKDF_SHA512: Kdf(KdfId.HKDF_SHA512, hashes.SHA512),
}


# =============================================================================
# KEM
# =============================================================================


class _DHKem(ABC):
    """DHKEM(Group, HKDF) from RFC 9180 §4.1."""

    kem_id: int
    n_secret: int
    n_enc: int
    n_pk: int
    kdf: Kdf

    @property
    def suite_id(self) -> bytes:
        return b"KEM" + self.kem_id.to_bytes(2, "big")

    # Group operations, implemented per curve
    @abstractmethod
    def generate(self) -> Any: ...

    @abstractmethod
    def public_bytes(self, private_key: Any) -> bytes: ...

    @abstractmethod
    def private_bytes(self, private_key: Any) -> bytes: ...

    @abstractmethod
    def load_public(self, data: bytes) -> Any: ...

    @abstractmethod
    def load_private(self, data: bytes) -> Any: ...

    @abstractmethod
    def dh(self, private_key: Any, public_key: Any) -> bytes: ...

    def _extract_and_expand(self, dh: bytes, kem_context: bytes) -> bytes:
        eae_prk = self.kdf.labeled_extract(self.suite_id, b"", b"eae_prk", dh)
        return self.kdf.labeled_expand(self.suite_id, eae_prk, b"shared_secret", kem_context, self.n_secret)

    def encap(self, pk_r: bytes, sk_e: Any = None) -> tuple[bytes, bytes]:
        """Return (shared_secret, enc) for recipient public key ``pk_r``."""
        if sk_e is None:
            sk_e = self.generate()
        try:
            pk_r_obj = self.load_public(pk_r)
            dh = self.dh(sk_e, pk_r_obj)
        except ValueError as e:
            raise EncapsulationError(f"Invalid public key for kem=0x{self.kem_id:04x}: {e}") from e
        enc = self.public_bytes(sk_e)
        return self._extract_and_expand(dh, enc + pk_r), enc

    def decap(self, enc: bytes, sk_r: Any) -> bytes:
        """Return the shared secret for encapsulated key ``enc``."""
        try:
            pk_e = self.load_public(enc)
            dh = self.dh(sk_r, pk_e)
        except ValueError as e:
            raise DecapsulationError(f"Invalid encapsulated key: {e}") from e
        pk_rm = self.public_bytes(sk_r)
        return self._extract_and_expand(dh, enc + pk_rm)


class _X25519Kem(_DHKem):
    kem_id = KemId.DHKEM_X25519_HKDF_SHA256
    n_secret = 32
    n_enc = 32
    n_pk = 32
    kdf = _KDFS[KdfId.HKDF_SHA256]

    def generate(self) -> x25519.X25519PrivateKey:
        return x25519.X25519PrivateKey.generate()

    def public_bytes(self, private_key: x25519.X25519PrivateKey) -> bytes:
        return private_key.public_key().public_bytes_raw()

    def private_bytes(self, private_key: x25519.X25519PrivateKey) -> bytes:
        return private_key.private_bytes_raw()

    def load_public(self, data: bytes) -> x25519.X25519PublicKey:
        return x25519.X25519PublicKey.from_public_bytes(data)

    def load_private(self, data: bytes) -> x25519.X25519PrivateKey:
        return x25519.X25519PrivateKey.from_private_bytes(data)

    def dh(self, private_key: x25519.X25519PrivateKey, public_key: x25519.X25519PublicKey) -> bytes:
        return private_key.exchange(public_key)


class _P256Kem(_DHKem):
    kem_id = KemId.DHKEM_P256_HKDF_SHA256
    n_secret = 32
    n_enc = 65
    n_pk = 65
    kdf = _KDFS[KdfId.HKDF_SHA256]

    def generate(self) -> ec.EllipticCurvePrivateKey:
        return ec.generate_private_key(ec.SECP256R1())

    def public_bytes(self, private_key: ec.EllipticCurvePrivateKey) -> bytes:
        return private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )

    def private_bytes(self, private_key: ec.EllipticCurvePrivateKey) -> bytes:
        return private_key.private_numbers().private_value.to_bytes(32, "big")

    def load_public(self, data: bytes) -> ec.EllipticCurvePublicKey:
        if len(data) != self.n_pk:
            raise ValueError(f"expected {self.n_pk} bytes, got {len(data)}")
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), data)

    def load_private(self, data: bytes) -> ec.EllipticCurvePrivateKey:
        return ec.derive_private_key(int.from_bytes(data, "big"), ec.SECP256R1())

    def dh(self, private_key: ec.EllipticCurvePrivateKey, public_key: ec.EllipticCurvePublicKey) -> bytes:
        return private_key.exchange(ec.ECDH(), public_key)


_KEMS: dict[int, _DHKem] = {
    KemId.DHKEM_X25519_HKDF_SHA256: _X25519Kem(),
    KemId.DHKEM_P256_HKDF_SHA256: _P256Kem(),
}


# =============================================================================
# AEAD
# =============================================================================


@dataclass(frozen=True)
class _Aead:
    aead_id: int
    cipher_cls: Any
    n_k: int
    n_n: int = 12
    n_t: int = AEAD_TAG_SIZE


_AEADS: dict[int, _Aead] = {
    AeadId.AES_128_GCM: _Aead(AeadId.AES_128_GCM, AESGCM, 16),
    AeadId.AES_256_GCM: _Aead(AeadId.AES_256_GCM, AESGCM, 32),
    AeadId.CHACHA20_POLY1305: _Aead(AeadId.CHACHA20_POLY1305, ChaCha20Poly1305, 32),
}


# =============================================================================
# Cipher suite
# =============================================================================


@dataclass(frozen=True)
class CipherSuite:
    """A supported (KEM, KDF, AEAD) combination."""

    kem: _DHKem
    kdf: Kdf
    aead: _Aead

    @classmethod
    def from_ids(cls, kem_id: int, kdf_id: int, aead_id: int) -> CipherSuite:
        """
        Look up a suite by its registered identifiers.

        Raises:
            UnsupportedSuiteError: If any identifier is not implemented
        """
        kem = _KEMS.get(kem_id)
        kdf = _KDFS.get(kdf_id)
        aead = _AEADS.get(aead_id)
        if kem is None or kdf is None or aead is None:
            raise UnsupportedSuiteError(kem_id, kdf_id, aead_id)
        return cls(kem=kem, kdf=kdf, aead=aead)

    @staticmethod
    def supports(kem_id: int, kdf_id: int | None = None, aead_id: int | None = None) -> bool:
        if kem_id not in _KEMS:
            return False
        if kdf_id is not None and kdf_id not in _KDFS:
            return False
        return aead_id is None or aead_id in _AEADS

    @property
    def suite_id(self) -> bytes:
        return (
            b"HPKE"
            + self.kem.kem_id.to_bytes(2, "big")
            + self.kdf.kdf_id.to_bytes(2, "big")
            + self.aead.aead_id.to_bytes(2, "big")
        )

    def new_cipher(self, key: bytes) -> Any:
        return self.aead.cipher_cls(key)


def generate_key_pair(kem_id: int) -> tuple[bytes, bytes]:
    """
    Generate a KEM key pair.

    Returns:
        Tuple of (private_key, public_key) in serialized form
    """
    kem = _KEMS.get(kem_id)
    if kem is None:
        raise UnsupportedSuiteError(kem_id)
    sk = kem.generate()
    return kem.private_bytes(sk), kem.public_bytes(sk)


def public_key_from_private(kem_id: int, sk: bytes) -> bytes:
    """Derive the serialized public key for a serialized private key."""
    kem = _KEMS.get(kem_id)
    if kem is None:
        raise UnsupportedSuiteError(kem_id)
    return kem.public_bytes(kem.load_private(sk))


# =============================================================================
# Contexts
# =============================================================================


class HPKEContext:
    """Encryption context produced by the key schedule (RFC 9180 §5.1)."""

    __slots__ = ("_cipher", "_seq", "base_nonce", "exporter_secret", "key", "suite")

    def __init__(self, suite: CipherSuite, key: bytes, base_nonce: bytes, exporter_secret: bytes) -> None:
        self.suite = suite
        self.key = key
        self.base_nonce = base_nonce
        self.exporter_secret = exporter_secret
        self._cipher = suite.new_cipher(key)
        self._seq = 0

    def _next_nonce(self) -> bytes:
        if self._seq > HPKE_MAX_SEQUENCE:
            raise OverflowError("HPKE sequence number exhausted")
        seq_bytes = self._seq.to_bytes(len(self.base_nonce), "big")
        self._seq += 1
        return bytes(a ^ b for a, b in zip(self.base_nonce, seq_bytes))

    def export(self, exporter_context: bytes, length: int) -> bytes:
        """Derive a secret of ``length`` bytes bound to this context."""
        return self.suite.kdf.labeled_expand(
            self.suite.suite_id, self.exporter_secret, b"sec", exporter_context, length
        )


class SenderContext(HPKEContext):
    """Sender side of an HPKE context; carries the encapsulated key."""

    __slots__ = ("enc",)

    def __init__(self, suite: CipherSuite, enc: bytes, key: bytes, base_nonce: bytes, exporter_secret: bytes) -> None:
        super().__init__(suite, key, base_nonce, exporter_secret)
        self.enc = enc

    def seal(self, aad: bytes, plaintext: bytes) -> bytes:
        return self._cipher.encrypt(self._next_nonce(), plaintext, aad)


class RecipientContext(HPKEContext):
    """Recipient side of an HPKE context."""

    __slots__ = ()

    def open(self, aad: bytes, ciphertext: bytes) -> bytes:
        """
        Decrypt and authenticate ``ciphertext``.

        Raises:
            DecapsulationError: If authentication fails
        """
        try:
            return self._cipher.decrypt(self._next_nonce(), ciphertext, aad)
        except InvalidTag as e:
            raise DecapsulationError("HPKE authentication failed") from e


def _key_schedule(suite: CipherSuite, shared_secret: bytes, info: bytes) -> tuple[bytes, bytes, bytes]:
    kdf = suite.kdf
    sid = suite.suite_id
    psk_id_hash = kdf.labeled_extract(sid, b"", b"psk_id_hash", b"")
    info_hash = kdf.labeled_extract(sid, b"", b"info_hash", info)
    context = bytes([MODE_BASE]) + psk_id_hash + info_hash
    secret = kdf.labeled_extract(sid, shared_secret, b"secret", b"")
    key = kdf.labeled_expand(sid, secret, b"key", context, suite.aead.n_k)
    base_nonce = kdf.labeled_expand(sid, secret, b"base_nonce", context, suite.aead.n_n)
    exporter_secret = kdf.labeled_expand(sid, secret, b"exp", context, kdf.n_h)
    return key, base_nonce, exporter_secret


def setup_sender_base(suite: CipherSuite, pk_r: bytes, info: bytes) -> SenderContext:
    """
    SetupBaseS: encapsulate to ``pk_r`` with a fresh ephemeral key.

    Raises:
        EncapsulationError: If ``pk_r`` is not a valid public key for the KEM
    """
    shared_secret, enc = suite.kem.encap(pk_r)
    return SenderContext(suite, enc, *_key_schedule(suite, shared_secret, info))


def _setup_sender_base_deterministic(suite: CipherSuite, pk_r: bytes, info: bytes, sk_e: bytes) -> SenderContext:
    """SetupBaseS with a caller-chosen ephemeral key (test vectors only)."""
    shared_secret, enc = suite.kem.encap(pk_r, suite.kem.load_private(sk_e))
    return SenderContext(suite, enc, *_key_schedule(suite, shared_secret, info))


def setup_recipient_base(suite: CipherSuite, enc: bytes, sk_r: bytes, info: bytes) -> RecipientContext:
    """
    SetupBaseR: recover the context from ``enc`` with private key ``sk_r``.

    Raises:
        DecapsulationError: If ``enc`` is not a valid encapsulated key
    """
    shared_secret = suite.kem.decap(enc, suite.kem.load_private(sk_r))
    return RecipientContext(suite, *_key_schedule(suite, shared_secret, info))
