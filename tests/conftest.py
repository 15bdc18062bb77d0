"""Shared test fixtures for ohttp_client tests."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass, field

import httpx
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from ohttp_client.client import OHTTPClient, OHTTPConfig
from ohttp_client.constants import CONTENT_TYPE_OHTTP_KEYS, CONTENT_TYPE_OHTTP_RESPONSE
from ohttp_client.gateway import Gateway, KeyConfig, RequestHandler
from ohttp_client.messages import RequestDescriptor, ResponseDescriptor

# Enable ohttp_client debug logging during tests
logging.getLogger("ohttp_client").setLevel(logging.DEBUG)
logging.getLogger("ohttp_client").addHandler(logging.StreamHandler())


# === URLs of the in-process relay ===

GATEWAY_URL = "https://relay.test/gateway"
KEYS_URL = "https://relay.test/ohttp-keys"


# === Target application behind the gateway ===


def target_app(request: RequestDescriptor) -> ResponseDescriptor:
    """Plays the target origin.

    - GET https://example.com/ with Accept: text/plain -> 200 "hello"
    - /echo -> 200 JSON describing the request as the gateway saw it
    - anything else -> 404
    """
    if request.url == "https://example.com/" and request.headers.get("accept") == "text/plain":
        return ResponseDescriptor(status=200, headers=httpx.Headers({"content-type": "text/plain"}), body=b"hello")
    if request.path.startswith("/echo"):
        echoed = {
            "method": request.method,
            "url": request.url,
            "headers": request.headers.multi_items(),
            "body": request.body.decode("utf-8"),
        }
        return ResponseDescriptor(
            status=200,
            headers=httpx.Headers({"content-type": "application/json"}),
            body=json.dumps(echoed).encode(),
        )
    return ResponseDescriptor(status=404, body=b"no such resource")


# === Key Fixtures ===


@pytest.fixture(scope="session")
def key_config() -> KeyConfig:
    """Gateway X25519 key config.

    Session-scoped: key generation is the slowest part of setup.
    """
    return KeyConfig.generate(key_id=1)


@pytest.fixture
def gateway(key_config: KeyConfig) -> Gateway:
    return Gateway([key_config])


# === Sync relay (httpx.MockTransport) ===


@dataclass
class FakeRelay:
    """Key config host and gateway served through httpx.MockTransport.

    Every request is recorded in ``calls`` so tests can check which hosts were
    contacted. Fields override one behavior each.
    """

    gateway: Gateway
    handler: RequestHandler = target_app
    keys_status: int = 200
    keys_body: bytes | None = None
    gateway_status: int = 200
    gateway_body: bytes | None = None
    inner_response: bytes | None = None
    """Binary response sealed as-is instead of running ``handler``."""
    calls: list[tuple[str, str]] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append((request.method, url))
        if request.method == "GET" and url == KEYS_URL:
            if self.keys_status != 200:
                return httpx.Response(self.keys_status, content=b"not found")
            body = self.keys_body if self.keys_body is not None else self.gateway.key_configs_body()
            return httpx.Response(200, content=body, headers={"Content-Type": CONTENT_TYPE_OHTTP_KEYS})
        if request.method == "POST" and url == GATEWAY_URL:
            if self.gateway_status != 200:
                return httpx.Response(self.gateway_status, content=self.gateway_body or b"")
            if self.gateway_body is not None:
                body = self.gateway_body
            elif self.inner_response is not None:
                _, context = self.gateway.decapsulate_request(request.content)
                body = context.encapsulate_response(self.inner_response)
            else:
                body = self.gateway.handle(request.content, self.handler)
            return httpx.Response(200, content=body, headers={"Content-Type": CONTENT_TYPE_OHTTP_RESPONSE})
        return httpx.Response(404)

    @property
    def gateway_calls(self) -> int:
        return sum(1 for _, url in self.calls if url == GATEWAY_URL)


@pytest.fixture
def relay(gateway: Gateway) -> FakeRelay:
    return FakeRelay(gateway)


@pytest.fixture
def http_client(relay: FakeRelay) -> Iterator[httpx.Client]:
    with httpx.Client(transport=httpx.MockTransport(relay)) as client:
        yield client


@pytest.fixture
def ohttp_config() -> OHTTPConfig:
    return OHTTPConfig(gateway_url=GATEWAY_URL, key_config_url=KEYS_URL)


@pytest.fixture
def client_factory(http_client: httpx.Client) -> Callable[..., OHTTPClient]:
    """Build an OHTTPClient bound to the fake relay.

    Usage:
        def test_something(client_factory):
            client = client_factory(verbose=True)
    """

    def _make(**config_overrides: object) -> OHTTPClient:
        config = OHTTPConfig(gateway_url=GATEWAY_URL, key_config_url=KEYS_URL, **config_overrides)  # type: ignore[arg-type]
        return OHTTPClient(config, http_client=http_client)

    return _make


# === Async relay (aiohttp test server) ===


@pytest_asyncio.fixture
async def aiohttp_relay(gateway: Gateway) -> AsyncIterator[TestServer]:
    """Real HTTP server on localhost exposing the gateway.

    Routes:
        GET  /ohttp-keys    key configs
        GET  /missing-keys  404
        POST /gateway       OHTTP gateway
        POST /overloaded    500 "gateway overloaded"
        POST /stalled       200, 8 of 100 declared bytes, then silence
    """

    async def keys(_request: web.Request) -> web.Response:
        return web.Response(body=gateway.key_configs_body(), content_type=CONTENT_TYPE_OHTTP_KEYS)

    async def missing(_request: web.Request) -> web.Response:
        return web.Response(status=404, text="no keys here")

    async def relay_request(request: web.Request) -> web.Response:
        body = await request.read()
        return web.Response(body=gateway.handle(body, target_app), content_type=CONTENT_TYPE_OHTTP_RESPONSE)

    async def overloaded(_request: web.Request) -> web.Response:
        return web.Response(status=500, text="gateway overloaded")

    async def stalled(request: web.Request) -> web.StreamResponse:
        await request.read()
        response = web.StreamResponse()
        response.content_length = 100
        await response.prepare(request)
        await response.write(b"\x00" * 8)
        await asyncio.sleep(1.0)
        return response

    app = web.Application()
    app.router.add_get("/ohttp-keys", keys)
    app.router.add_get("/missing-keys", missing)
    app.router.add_post("/gateway", relay_request)
    app.router.add_post("/overloaded", overloaded)
    app.router.add_post("/stalled", stalled)

    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()
