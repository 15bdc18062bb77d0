"""RFC 9458 Oblivious HTTP worked example.

Source: RFC 9458 Appendix A
https://www.rfc-editor.org/rfc/rfc9458.html#appendix-A

Validates both halves of the exchange against the reference bytes:
- key configuration encoding (key_id=1, X25519, HKDF-SHA256, AES-128-GCM)
- request header and HPKE info, with a fixed ephemeral key
- response key and nonce derivation, with a fixed response nonce

To update: These are hardcoded from RFC 9458 Appendix A.
"""

import pytest

from ohttp_client.bhttp import decode_request, decode_response
from ohttp_client.constants import RESPONSE_EXPORT_LABEL, AeadId, KdfId, KemId
from ohttp_client.encapsulation import (
    HPKEEncapsulation,
    SessionContext,
    _HPKESession,  # pyright: ignore[reportPrivateUsage] - test access
    build_request_header,
    derive_response_keys,
    request_info,
)
from ohttp_client.gateway import Gateway, KeyConfig
from ohttp_client.hpke import (
    CipherSuite,
    SenderContext,
    _setup_sender_base_deterministic,  # pyright: ignore[reportPrivateUsage] - test access
    public_key_from_private,
)
from ohttp_client.keyconfig import SymmetricSuite, parse_public_config

SK_R = bytes.fromhex("3c168975674b2fa8e465970b79c8dcf09f1c741626480bd4c6162fc5b6a98e1a")
PK_R = bytes.fromhex("31e1f05a740102115220e9af918f738674aec95f54db6e04eb705aae8e798155")
KEY_CONFIG = bytes.fromhex(
    "01002031e1f05a740102115220e9af918f738674aec95f54db6e04eb705aae8e79815500080001000100010003"
)

# GET https://example.com/ with the empty sections truncated away
REQUEST = bytes.fromhex("00034745540568747470730b6578616d706c652e636f6d012f")
SK_E = bytes.fromhex("bc51d5e930bda26589890ac7032f70ad12e4ecb37abb1b65b1256c9c48999c73")
PK_E = bytes.fromhex("4b28f881333e7c164ffc499ad9796f877f4e1051ee6d31bad19dec96c208b472")
REQUEST_HEADER = bytes.fromhex("01002000010001")
ENCAPSULATED_REQUEST = bytes.fromhex(
    "010020000100014b28f881333e7c164ffc499ad9796f877f4e1051ee6d31bad19dec96c208b472"
    "6374e469135906992e1268c594d2a10c695d858c40a026e7965e7d86b83dd440b2c0185204b4d63525"
)

# 200 with no fields and no content
RESPONSE = bytes.fromhex("0140c8")
RESPONSE_NONCE = bytes.fromhex("c789e7151fcba46158ca84b04464910d")
ENCAPSULATED_RESPONSE = bytes.fromhex(
    "c789e7151fcba46158ca84b04464910d86f9013e404feea014e7be4a441f234f857fbd"
)


@pytest.fixture
def suite() -> CipherSuite:
    return CipherSuite.from_ids(KemId.DHKEM_X25519_HKDF_SHA256, KdfId.HKDF_SHA256, AeadId.AES_128_GCM)


@pytest.fixture
def sender(suite: CipherSuite) -> SenderContext:
    return _setup_sender_base_deterministic(suite, PK_R, request_info(REQUEST_HEADER), SK_E)


@pytest.mark.vectors
class TestRFC9458KeyConfig:
    """Key configuration encoding."""

    def test_public_key_from_private(self) -> None:
        assert public_key_from_private(KemId.DHKEM_X25519_HKDF_SHA256, SK_R) == PK_R

    def test_parse_key_config(self) -> None:
        config = parse_public_config(KEY_CONFIG)

        assert config.key_id == 1
        assert config.kem_id == KemId.DHKEM_X25519_HKDF_SHA256
        assert config.public_key == PK_R
        assert config.suites == (
            SymmetricSuite(KdfId.HKDF_SHA256, AeadId.AES_128_GCM),
            SymmetricSuite(KdfId.HKDF_SHA256, AeadId.CHACHA20_POLY1305),
        )
        assert config.serialize() == KEY_CONFIG


@pytest.mark.vectors
class TestRFC9458Request:
    """Request encapsulation with the example's ephemeral key."""

    def test_request_header(self, suite: CipherSuite) -> None:
        assert build_request_header(1, suite) == REQUEST_HEADER
        assert request_info(REQUEST_HEADER) == b"message/bhttp request\x00" + REQUEST_HEADER

    def test_encapsulate_request(self, sender: SenderContext) -> None:
        assert sender.enc == PK_E, "enc mismatch"

        encapsulated = REQUEST_HEADER + sender.enc + sender.seal(b"", REQUEST)

        assert encapsulated == ENCAPSULATED_REQUEST

    def test_gateway_opens_request(self) -> None:
        key_config = KeyConfig(
            key_id=1,
            kem_id=KemId.DHKEM_X25519_HKDF_SHA256,
            private_key=SK_R,
            public_key=PK_R,
            suites=parse_public_config(KEY_CONFIG).suites,
        )

        binary_request, _ = Gateway([key_config]).decapsulate_request(ENCAPSULATED_REQUEST)

        assert binary_request == REQUEST
        decoded = decode_request(binary_request)
        assert decoded.method == "GET"
        assert decoded.url == "https://example.com/"


@pytest.mark.vectors
class TestRFC9458Response:
    """Response encapsulation with the example's response nonce."""

    def test_response_keys(self, suite: CipherSuite, sender: SenderContext) -> None:
        secret = sender.export(RESPONSE_EXPORT_LABEL, 16)
        key, nonce = derive_response_keys(suite, secret, PK_E, RESPONSE_NONCE)

        sealed = suite.new_cipher(key).encrypt(nonce, RESPONSE, b"")

        assert RESPONSE_NONCE + sealed == ENCAPSULATED_RESPONSE

    def test_client_opens_response(self, sender: SenderContext) -> None:
        context = SessionContext(_HPKESession(sender))

        binary_response = HPKEEncapsulation().close_response(context, ENCAPSULATED_RESPONSE)

        assert binary_response == RESPONSE
        decoded = decode_response(binary_response)
        assert decoded.status == 200
        assert decoded.body == b""
