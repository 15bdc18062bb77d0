"""
aiohttp client session that sends requests through an Oblivious HTTP gateway.

Async counterpart of ``OHTTPClient``. Each call runs one Exchange: the key
config is fetched, the request is encoded and encapsulated, relayed to the
gateway, and the reply is opened. Nothing is cached between calls.

Usage:
    config = OHTTPConfig(gateway_url=..., key_config_url=...)
    async with OHTTPClientSession(config) as session:
        response = await session.request("GET", "https://example.com/")
        print(response.status, response.text)
"""

from __future__ import annotations

import asyncio
import types
from http import HTTPStatus
from typing import Any, TextIO

import aiohttp
from typing_extensions import Self

from ohttp_client._logging import get_logger
from ohttp_client.client import Exchange, ExchangeState, OHTTPConfig
from ohttp_client.constants import CONTENT_TYPE_OHTTP_REQUEST, CONTENT_TYPE_OHTTP_RESPONSE
from ohttp_client.encapsulation import EncapsulationEngine, HPKEEncapsulation
from ohttp_client.exceptions import ReadError, Stage, TransportError, UpstreamStatusError
from ohttp_client.messages import HeaderTypes, RequestDescriptor, ResponseDescriptor

__all__ = [
    "OHTTPClientSession",
]

_logger = get_logger(__name__)


class OHTTPClientSession:
    """aiohttp-backed Oblivious HTTP client."""

    def __init__(
        self,
        config: OHTTPConfig,
        *,
        engine: EncapsulationEngine | None = None,
        output: TextIO | None = None,
        **aiohttp_kwargs: Any,
    ) -> None:
        """
        Initialize the session.

        Args:
            config: Gateway and key config URLs, verbosity, timeout
            engine: Encapsulation engine (defaults to HPKEEncapsulation)
            output: Stream for verbose text (defaults to sys.stdout)
            **aiohttp_kwargs: Additional arguments passed to aiohttp.ClientSession
        """
        self.config = config
        self._engine = engine or HPKEEncapsulation()
        self._output = output
        self._session: aiohttp.ClientSession | None = None
        if "timeout" not in aiohttp_kwargs and config.timeout is not None:
            aiohttp_kwargs["timeout"] = aiohttp.ClientTimeout(total=config.timeout)
        self._aiohttp_kwargs = aiohttp_kwargs

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        self._session = aiohttp.ClientSession(**self._aiohttp_kwargs)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _exchange(self, method: str, url: str, what: str, **kwargs: Any) -> tuple[bytes, str]:
        if not self._session:
            raise RuntimeError("Session not initialized. Use 'async with' context manager.")
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                try:
                    body = await resp.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    if resp.status != HTTPStatus.OK:
                        # A non-200 status is reported even when its body is unreadable
                        raise UpstreamStatusError(what, resp.status) from e
                    raise ReadError(f"failed to read {what} response: {e}") from e
                if resp.status != HTTPStatus.OK:
                    raise UpstreamStatusError(what, resp.status, body)
                return body, resp.headers.get("Content-Type", "")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _logger.debug("Request failed: what=%s url=%s error=%s", what, url, e)
            raise TransportError(f"failed to reach {what} at {url}: {e}") from e

    async def _fetch_key_config(self) -> bytes:
        url = self.config.key_config_url
        _logger.debug("Fetching key config: url=%s", url)
        body, _ = await self._exchange("GET", url, "key config")
        _logger.debug("Key config fetched: url=%s size=%d", url, len(body))
        return body

    async def _relay(self, encapsulated_request: bytes) -> bytes:
        url = self.config.gateway_url
        _logger.debug("Relaying request: url=%s size=%d", url, len(encapsulated_request))
        body, content_type = await self._exchange(
            "POST",
            url,
            "gateway",
            data=encapsulated_request,
            headers={"Content-Type": CONTENT_TYPE_OHTTP_REQUEST},
        )
        if content_type != CONTENT_TYPE_OHTTP_RESPONSE:
            _logger.debug("Unexpected gateway content type: %r", content_type)
        return body

    async def send(self, request: RequestDescriptor) -> ResponseDescriptor:
        """
        Send a request through the gateway.

        Raises:
            OHTTPError: Subclass for the failing stage, with ``stage`` set
        """
        exchange = Exchange(self.config, request, engine=self._engine, output=self._output)
        exchange.announce()
        with exchange.stage(Stage.KEY_FETCH, ExchangeState.KEY_FETCHED):
            exchange.accept_key_config(await self._fetch_key_config())
        exchange.encode_request()
        exchange.encapsulate_request()
        with exchange.stage(Stage.RELAY, ExchangeState.RELAYED):
            encapsulated_response = await self._relay(exchange.encapsulated_request)
        return exchange.open_response(encapsulated_response)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: HeaderTypes | None = None,
        body: bytes | str | None = None,
    ) -> ResponseDescriptor:
        """Build a RequestDescriptor and send it."""
        return await self.send(RequestDescriptor.build(method, url, headers=headers, body=body))

    # Convenience methods
    async def get(self, url: str, **kwargs: Any) -> ResponseDescriptor:
        """GET request."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> ResponseDescriptor:
        """POST request."""
        return await self.request("POST", url, **kwargs)
