"""
Blocking HTTP I/O for the key config fetch and the gateway relay, over httpx.

Both calls are single attempts. httpx failures are mapped onto the client's
error taxonomy:
- connection-phase ``httpx.HTTPError`` -> TransportError
- failure while reading a 200 body     -> ReadError
- status other than 200                -> UpstreamStatusError (even if its body is unreadable)
"""

from http import HTTPStatus
from typing import Any

import httpx

from ohttp_client._logging import get_logger
from ohttp_client.constants import CONTENT_TYPE_OHTTP_REQUEST, CONTENT_TYPE_OHTTP_RESPONSE
from ohttp_client.exceptions import ReadError, TransportError, UpstreamStatusError

__all__ = [
    "fetch_key_config",
    "relay",
]

_logger = get_logger(__name__)


def _exchange(client: httpx.Client, method: str, url: str, what: str, **kwargs: Any) -> tuple[bytes, httpx.Headers]:
    try:
        with client.stream(method, url, **kwargs) as response:
            try:
                body = response.read()
            except httpx.HTTPError as e:
                if response.status_code != HTTPStatus.OK:
                    # A non-200 status is reported even when its body is unreadable
                    raise UpstreamStatusError(what, response.status_code) from e
                raise ReadError(f"failed to read {what} response: {e}") from e
            if response.status_code != HTTPStatus.OK:
                raise UpstreamStatusError(what, response.status_code, body)
            return body, response.headers
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise TransportError(f"failed to reach {what} at {url}: {e}") from e


def fetch_key_config(client: httpx.Client, url: str) -> bytes:
    """
    Download the gateway's key configuration.

    Args:
        client: httpx client to issue the GET with
        url: Key config URL

    Returns:
        Raw key config body

    Raises:
        TransportError: If the host cannot be reached
        UpstreamStatusError: If the status is not 200
        ReadError: If the body cannot be read
    """
    _logger.debug("Fetching key config: url=%s", url)
    body, _ = _exchange(client, "GET", url, "key config")
    _logger.debug("Key config fetched: url=%s size=%d", url, len(body))
    return body


def relay(client: httpx.Client, gateway_url: str, encapsulated_request: bytes) -> bytes:
    """
    POST an encapsulated request to the gateway.

    Args:
        client: httpx client to issue the POST with
        gateway_url: Gateway URL
        encapsulated_request: Body to send as ``message/ohttp-req``

    Returns:
        Encapsulated response bytes

    Raises:
        TransportError: If the gateway cannot be reached
        UpstreamStatusError: If the outer status is not 200 (carries status and body)
        ReadError: If the response body cannot be read
    """
    _logger.debug("Relaying request: url=%s size=%d", gateway_url, len(encapsulated_request))
    body, headers = _exchange(
        client,
        "POST",
        gateway_url,
        "gateway",
        content=encapsulated_request,
        headers={"Content-Type": CONTENT_TYPE_OHTTP_REQUEST},
    )
    content_type = headers.get("Content-Type", "")
    if content_type != CONTENT_TYPE_OHTTP_RESPONSE:
        _logger.debug("Unexpected gateway content type: %r", content_type)
    _logger.debug("Gateway responded: url=%s size=%d", gateway_url, len(body))
    return body
