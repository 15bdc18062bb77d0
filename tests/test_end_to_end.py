"""End-to-end tests: OHTTPClient against an in-process gateway.

The relay is an httpx.MockTransport (see conftest.FakeRelay) backed by a real
Gateway holding the private key, so every byte goes through the same
encode -> encapsulate -> relay -> decapsulate -> decode path as production.
"""

import io
from collections.abc import Callable

import httpx
import pytest

from ohttp_client.client import OHTTPClient, OHTTPConfig, do_request
from ohttp_client.exceptions import (
    DecapsulationError,
    DecodeError,
    EncapsulationError,
    EncodeError,
    OHTTPError,
    ReadError,
    Stage,
    TransportError,
    UpstreamStatusError,
)
from ohttp_client.keyconfig import PublicKeyConfig, SymmetricSuite, serialize_key_configs
from ohttp_client.messages import RequestDescriptor, ResponseDescriptor
from tests.conftest import GATEWAY_URL, KEYS_URL, FakeRelay

ClientFactory = Callable[..., OHTTPClient]


class TestSuccessfulExchange:
    """Requests that make it all the way to the target and back."""

    def test_get_hello(self, client_factory: ClientFactory) -> None:
        """GET https://example.com/ with Accept: text/plain returns 200 "hello"."""
        response = client_factory().request("GET", "https://example.com/", headers={"Accept": "text/plain"})

        assert response.status == 200
        assert response.body == b"hello"
        assert response.headers["content-type"] == "text/plain"

    def test_target_sees_request_unchanged(self, client_factory: ClientFactory) -> None:
        response = client_factory().request(
            "POST",
            "https://example.com/echo?q=1",
            headers=[("X-Trace", "a"), ("Content-Type", "application/json"), ("X-Trace", "b")],
            body='{"k": "v"}',
        )

        echoed = response.json()
        assert echoed["method"] == "POST"
        assert echoed["url"] == "https://example.com/echo?q=1"
        assert echoed["headers"] == [["x-trace", "a"], ["content-type", "application/json"], ["x-trace", "b"]]
        assert echoed["body"] == '{"k": "v"}'

    def test_target_status_passed_through(self, client_factory: ClientFactory) -> None:
        """A target 404 is a successful exchange, not an error."""
        response = client_factory().request("GET", "https://example.com/missing")
        assert response.status == 404
        assert response.body == b"no such resource"

    def test_key_config_fetched_for_every_request(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        client = client_factory()
        client.request("GET", "https://example.com/echo")
        client.request("GET", "https://example.com/echo")

        assert relay.calls == [
            ("GET", KEYS_URL),
            ("POST", GATEWAY_URL),
            ("GET", KEYS_URL),
            ("POST", GATEWAY_URL),
        ]

    def test_bare_key_config_accepted(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.keys_body = relay.gateway.key_configs_body()[2:]
        response = client_factory().request("GET", "https://example.com/", headers={"Accept": "text/plain"})
        assert response.body == b"hello"

    def test_verbose_does_not_change_result(self, client_factory: ClientFactory) -> None:
        request = RequestDescriptor.build("GET", "https://example.com/echo", headers={"X-A": "1"})
        output = io.StringIO()

        quiet = client_factory().send(request)
        verbose_client = client_factory(verbose=True)
        verbose_client._output = output  # pyright: ignore[reportPrivateUsage]
        loud = verbose_client.send(request)

        assert loud == quiet
        assert "Successfully decrypted response!" in output.getvalue()

    def test_do_request_with_real_client(self, relay: FakeRelay, monkeypatch: pytest.MonkeyPatch) -> None:
        """do_request builds its own httpx client from the config."""
        real_client = httpx.Client

        def mocked_client(**kwargs: object) -> httpx.Client:
            assert kwargs["timeout"] == 5.0
            return real_client(transport=httpx.MockTransport(relay))

        monkeypatch.setattr(httpx, "Client", mocked_client)
        config = OHTTPConfig(gateway_url=GATEWAY_URL, key_config_url=KEYS_URL, timeout=5.0)
        request = RequestDescriptor.build("GET", "https://example.com/", headers={"Accept": "text/plain"})

        assert do_request(config, request) == ResponseDescriptor(
            status=200, headers=httpx.Headers({"content-type": "text/plain"}), body=b"hello"
        )


class TestAbortedExchange:
    """The first failing stage aborts with a tagged error."""

    def test_key_config_404(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.keys_status = 404

        with pytest.raises(UpstreamStatusError) as exc_info:
            client_factory().request("GET", "https://example.com/")

        assert exc_info.value.status_code == 404
        assert exc_info.value.stage is Stage.KEY_FETCH
        assert relay.gateway_calls == 0

    def test_gateway_500(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.gateway_status = 500
        relay.gateway_body = b"gateway overloaded"

        with pytest.raises(UpstreamStatusError) as exc_info:
            client_factory().request("GET", "https://example.com/")

        assert exc_info.value.status_code == 500
        assert exc_info.value.stage is Stage.RELAY
        assert "gateway overloaded" in str(exc_info.value)

    def test_malformed_key_config(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.keys_body = b"\x01\x02"
        with pytest.raises(DecodeError) as exc_info:
            client_factory().request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.KEY_FETCH
        assert relay.gateway_calls == 0

    def test_unencodable_request(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        with pytest.raises(EncodeError) as exc_info:
            client_factory().request("GET", "https://example.com/", headers=[("Bad Header", "x")])
        assert exc_info.value.stage is Stage.ENCODE_REQUEST
        assert relay.gateway_calls == 0

    def test_unsupported_key_config(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        x448 = PublicKeyConfig(key_id=1, kem_id=0x0021, public_key=b"\x01" * 56, suites=(SymmetricSuite(1, 1),))
        relay.keys_body = serialize_key_configs([x448])

        with pytest.raises(EncapsulationError) as exc_info:
            client_factory().request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.ENCAPSULATE
        assert relay.gateway_calls == 0

    def test_gateway_unreachable(self, ohttp_config: OHTTPConfig, relay: FakeRelay) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GATEWAY_URL:
                raise httpx.ConnectError("connection refused", request=request)
            return relay(request)

        with httpx.Client(transport=httpx.MockTransport(handler)) as http:
            client = OHTTPClient(ohttp_config, http_client=http)
            with pytest.raises(TransportError) as exc_info:
                client.request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.RELAY

    def test_gateway_body_cut_off(self, ohttp_config: OHTTPConfig, relay: FakeRelay) -> None:
        class _Truncated(httpx.SyncByteStream):
            def __iter__(self):  # type: ignore[no-untyped-def]
                yield b"\x00" * 8
                raise httpx.RemoteProtocolError("peer closed connection without sending complete message body")

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == GATEWAY_URL:
                return httpx.Response(200, stream=_Truncated())
            return relay(request)

        with httpx.Client(transport=httpx.MockTransport(handler)) as http:
            client = OHTTPClient(ohttp_config, http_client=http)
            with pytest.raises(ReadError) as exc_info:
                client.request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.RELAY

    def test_tampered_response(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.gateway_body = b"\x00" * 64
        with pytest.raises(DecapsulationError) as exc_info:
            client_factory().request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.DECAPSULATE

    def test_undecodable_inner_response(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.inner_response = b"\x01\x3f"
        with pytest.raises(DecodeError) as exc_info:
            client_factory().request("GET", "https://example.com/")
        assert exc_info.value.stage is Stage.DECODE_RESPONSE

    def test_verbose_does_not_change_error(self, client_factory: ClientFactory, relay: FakeRelay) -> None:
        relay.keys_status = 404
        errors: list[OHTTPError] = []
        for verbose in (False, True):
            client = client_factory(verbose=verbose)
            client._output = io.StringIO()  # pyright: ignore[reportPrivateUsage]
            with pytest.raises(UpstreamStatusError) as exc_info:
                client.request("GET", "https://example.com/")
            errors.append(exc_info.value)

        assert type(errors[0]) is type(errors[1])
        assert str(errors[0]) == str(errors[1])
        assert errors[0].stage is errors[1].stage


class TestClientLifecycle:
    """Ownership of the underlying httpx client."""

    def test_context_manager_owns_client(self, ohttp_config: OHTTPConfig) -> None:
        with OHTTPClient(ohttp_config) as client:
            http = client._http  # pyright: ignore[reportPrivateUsage]
            assert http is not None
        assert http.is_closed

    def test_borrowed_client_left_open(self, ohttp_config: OHTTPConfig, http_client: httpx.Client) -> None:
        with OHTTPClient(ohttp_config, http_client=http_client):
            pass
        assert not http_client.is_closed
