"""
Oblivious HTTP (RFC 9458) client library.

Sends a plain HTTP request to its target through an untrusted gateway: the
request is encoded as Binary HTTP (RFC 9292), encapsulated with HPKE
(RFC 9180) under the gateway's published key configuration, and the
encapsulated response is opened and decoded on the way back.

Usage (blocking - httpx):
    from ohttp_client import OHTTPClient, OHTTPConfig

    config = OHTTPConfig(
        gateway_url="https://relay.example/gateway",
        key_config_url="https://relay.example/ohttp-configs",
    )
    with OHTTPClient(config) as client:
        response = client.request("GET", "https://example.com/")

Usage (async - aiohttp):
    from ohttp_client.middleware.aiohttp import OHTTPClientSession

    async with OHTTPClientSession(config) as session:
        response = await session.request("GET", "https://example.com/")
"""

from ohttp_client.client import Exchange, ExchangeState, OHTTPClient, OHTTPConfig, do_request
from ohttp_client.constants import CONTENT_TYPE_OHTTP_REQUEST, CONTENT_TYPE_OHTTP_RESPONSE, AeadId, KdfId, KemId
from ohttp_client.exceptions import (
    CryptoError,
    DecapsulationError,
    DecodeError,
    EncapsulationError,
    EncodeError,
    OHTTPError,
    ReadError,
    Stage,
    TransportError,
    UnsupportedSuiteError,
    UpstreamStatusError,
)
from ohttp_client.keyconfig import PublicKeyConfig, SymmetricSuite
from ohttp_client.messages import InformationalResponse, RequestDescriptor, ResponseDescriptor

__all__ = [
    # Constants
    "CONTENT_TYPE_OHTTP_REQUEST",
    "CONTENT_TYPE_OHTTP_RESPONSE",
    "AeadId",
    "KdfId",
    "KemId",
    # Client
    "Exchange",
    "ExchangeState",
    "OHTTPClient",
    "OHTTPConfig",
    "do_request",
    # Messages
    "InformationalResponse",
    "PublicKeyConfig",
    "RequestDescriptor",
    "ResponseDescriptor",
    "SymmetricSuite",
    # Exceptions
    "CryptoError",
    "DecapsulationError",
    "DecodeError",
    "EncapsulationError",
    "EncodeError",
    "OHTTPError",
    "ReadError",
    "Stage",
    "TransportError",
    "UnsupportedSuiteError",
    "UpstreamStatusError",
]

__version__ = "0.1.0"
