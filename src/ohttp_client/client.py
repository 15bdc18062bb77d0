"""
Oblivious HTTP request orchestration.

One Exchange drives one request through six strictly sequential stages:

    INIT --key fetch--> KEY_FETCHED --encode--> REQUEST_ENCODED
         --encapsulate--> REQUEST_ENCAPSULATED --relay--> RELAYED
         --decapsulate--> RESPONSE_DECAPSULATED --decode--> RESPONSE_DECODED

The first failing stage moves the exchange to ABORTED and its error is
re-raised with ``stage`` set. Nothing is retried or cached between exchanges.

Usage:
    config = OHTTPConfig(
        gateway_url="https://relay.example/gateway",
        key_config_url="https://relay.example/ohttp-configs",
    )
    with OHTTPClient(config) as client:
        response = client.request("GET", "https://example.com/", headers={"Accept": "text/plain"})
        print(response.status, response.text)
"""

from __future__ import annotations

import os
import sys
import types
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, TextIO

import httpx
from typing_extensions import Self

from ohttp_client._logging import get_logger
from ohttp_client.bhttp import decode_response, encode_request
from ohttp_client.constants import (
    DEFAULT_TIMEOUT,
    ENV_GATEWAY_URL,
    ENV_KEYS_URL,
    ENV_TIMEOUT,
    ENV_VERBOSE,
)
from ohttp_client.encapsulation import EncapsulationEngine, HPKEEncapsulation, SessionContext
from ohttp_client.exceptions import OHTTPError, Stage
from ohttp_client.keyconfig import PublicKeyConfig, parse_public_config
from ohttp_client.messages import HeaderTypes, RequestDescriptor, ResponseDescriptor
from ohttp_client.transport import fetch_key_config, relay

__all__ = [
    "Exchange",
    "ExchangeState",
    "OHTTPClient",
    "OHTTPConfig",
    "do_request",
]

_logger = get_logger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


class ExchangeState(Enum):
    INIT = "init"
    KEY_FETCHED = "key_fetched"
    REQUEST_ENCODED = "request_encoded"
    REQUEST_ENCAPSULATED = "request_encapsulated"
    RELAYED = "relayed"
    RESPONSE_DECAPSULATED = "response_decapsulated"
    RESPONSE_DECODED = "response_decoded"
    ABORTED = "aborted"


@dataclass(frozen=True)
class OHTTPConfig:
    """Settings for one client; passed explicitly, never global."""

    gateway_url: str
    key_config_url: str
    verbose: bool = False
    timeout: float | None = DEFAULT_TIMEOUT
    """Per-operation HTTP timeout in seconds (None disables it)."""

    def __post_init__(self) -> None:
        if not self.gateway_url:
            raise ValueError("gateway_url is required")
        if not self.key_config_url:
            raise ValueError("key_config_url is required")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> OHTTPConfig:
        """
        Build a config from OHTTP_* environment variables.

        Keyword overrides that are not None win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "gateway_url": env.get(ENV_GATEWAY_URL, ""),
            "key_config_url": env.get(ENV_KEYS_URL, ""),
            "verbose": env.get(ENV_VERBOSE, "").lower() in _TRUTHY,
            "timeout": float(env[ENV_TIMEOUT]) if env.get(ENV_TIMEOUT) else DEFAULT_TIMEOUT,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class Exchange:
    """
    A single request/response exchange.

    The network stages are driven by a caller (``run`` for httpx, or the
    aiohttp session); the CPU stages are methods here so both drivers share
    them. Each Exchange owns its own key config and session context.
    """

    def __init__(
        self,
        config: OHTTPConfig,
        request: RequestDescriptor,
        *,
        engine: EncapsulationEngine | None = None,
        output: TextIO | None = None,
    ) -> None:
        self.config = config
        self.request = request
        self.state = ExchangeState.INIT
        self.error: OHTTPError | None = None
        self._engine = engine or HPKEEncapsulation()
        self._output = output

        self._key_config: PublicKeyConfig | None = None
        self._binary_request: bytes | None = None
        self._encapsulated_request: bytes | None = None
        self._context: SessionContext | None = None
        self._binary_response: bytes | None = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def echo(self, message: str) -> None:
        """Verbose side channel; never affects control flow."""
        _logger.debug("%s", message.strip())
        if self.config.verbose:
            print(message, file=self._output or sys.stdout)

    def _require(self, expected: ExchangeState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"Exchange is in state {self.state.value}, expected {expected.value}")

    @contextmanager
    def stage(self, stage: Stage, reached: ExchangeState) -> Iterator[None]:
        """Run one transition; tag and re-raise failures, advance on success."""
        try:
            yield
        except OHTTPError as e:
            if e.stage is None:
                e.stage = stage
            self.state = ExchangeState.ABORTED
            self.error = e
            _logger.debug("Exchange aborted: stage=%s error=%s", stage.value, e.message)
            raise
        except BaseException:
            self.state = ExchangeState.ABORTED
            raise
        self.state = reached

    @property
    def encapsulated_request(self) -> bytes:
        self._require(ExchangeState.REQUEST_ENCAPSULATED)
        assert self._encapsulated_request is not None
        return self._encapsulated_request

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def announce(self) -> None:
        """Print the exchange summary and the key fetch checkpoint."""
        self._require(ExchangeState.INIT)
        self.echo(
            f"Gateway URL: {self.config.gateway_url}\n"
            f"Target URL: {self.request.url}\n"
            f"Keys URL: {self.config.key_config_url}\n"
        )
        self.echo(f"Downloading OHTTP key config: {self.config.key_config_url}")

    def accept_key_config(self, body: bytes) -> PublicKeyConfig:
        """Parse the fetched key config. Call inside the KEY_FETCH stage."""
        self._require(ExchangeState.INIT)
        self._key_config = parse_public_config(body)
        self.echo("Successfully parsed key config.")
        return self._key_config

    def encode_request(self) -> bytes:
        self._require(ExchangeState.KEY_FETCHED)
        with self.stage(Stage.ENCODE_REQUEST, ExchangeState.REQUEST_ENCODED):
            self._binary_request = encode_request(self.request)
        self.echo("Created BHTTP inner request.")
        return self._binary_request

    def encapsulate_request(self) -> bytes:
        self._require(ExchangeState.REQUEST_ENCODED)
        assert self._key_config is not None and self._binary_request is not None
        with self.stage(Stage.ENCAPSULATE, ExchangeState.REQUEST_ENCAPSULATED):
            self._encapsulated_request, self._context = self._engine.open_request(
                self._key_config, self._binary_request
            )
        self.echo("Successfully encapsulated OHTTP request.")
        return self._encapsulated_request

    def open_response(self, encapsulated_response: bytes) -> ResponseDescriptor:
        """Decapsulate and decode the gateway's reply. Call after the RELAY stage."""
        self._require(ExchangeState.RELAYED)
        assert self._context is not None
        self._encapsulated_request = None

        with self.stage(Stage.DECAPSULATE, ExchangeState.RESPONSE_DECAPSULATED):
            self._binary_response = self._engine.close_response(self._context, encapsulated_response)
        self.echo("Successfully decrypted response!")

        with self.stage(Stage.DECODE_RESPONSE, ExchangeState.RESPONSE_DECODED):
            response = decode_response(self._binary_response)
        _logger.debug("Exchange complete: status=%d body_size=%d", response.status, len(response.body))
        return response

    # ------------------------------------------------------------------
    # Blocking driver
    # ------------------------------------------------------------------

    def run(self, client: httpx.Client) -> ResponseDescriptor:
        """Drive every stage with blocking httpx I/O."""
        self.announce()
        with self.stage(Stage.KEY_FETCH, ExchangeState.KEY_FETCHED):
            self.accept_key_config(fetch_key_config(client, self.config.key_config_url))
        self.encode_request()
        self.encapsulate_request()
        with self.stage(Stage.RELAY, ExchangeState.RELAYED):
            encapsulated_response = relay(client, self.config.gateway_url, self.encapsulated_request)
        return self.open_response(encapsulated_response)


class OHTTPClient:
    """
    Blocking Oblivious HTTP client.

    Every call runs a fresh Exchange: the key config is fetched each time and
    no state is shared between calls except the pooled httpx connection.
    """

    def __init__(
        self,
        config: OHTTPConfig,
        *,
        engine: EncapsulationEngine | None = None,
        http_client: httpx.Client | None = None,
        output: TextIO | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Gateway and key config URLs, verbosity, timeout
            engine: Encapsulation engine (defaults to HPKEEncapsulation)
            http_client: httpx client to reuse; not closed by this client
            output: Stream for verbose text (defaults to sys.stdout)
        """
        self.config = config
        self._engine = engine or HPKEEncapsulation()
        self._http = http_client
        self._owns_http = http_client is None
        self._output = output

    def __enter__(self) -> Self:
        if self._http is None:
            self._http = httpx.Client(timeout=self.config.timeout)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http and self._http is not None:
            self._http.close()
            self._http = None

    def send(self, request: RequestDescriptor) -> ResponseDescriptor:
        """
        Send a request through the gateway.

        Raises:
            OHTTPError: Subclass for the failing stage, with ``stage`` set
        """
        exchange = Exchange(self.config, request, engine=self._engine, output=self._output)
        if self._http is not None:
            return exchange.run(self._http)
        with httpx.Client(timeout=self.config.timeout) as http:
            return exchange.run(http)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: HeaderTypes | None = None,
        body: bytes | str | None = None,
    ) -> ResponseDescriptor:
        """Build a RequestDescriptor and send it."""
        return self.send(RequestDescriptor.build(method, url, headers=headers, body=body))


def do_request(
    config: OHTTPConfig,
    request: RequestDescriptor,
    *,
    engine: EncapsulationEngine | None = None,
    output: TextIO | None = None,
) -> ResponseDescriptor:
    """One-shot helper: send ``request`` with a throwaway client."""
    with OHTTPClient(config, engine=engine, output=output) as client:
        return client.send(request)
