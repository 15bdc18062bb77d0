"""
Plain HTTP message descriptors exchanged with the caller.

Headers are ``httpx.Headers``: a case-insensitive multimap that keeps
insertion order, which is exactly what Binary HTTP field sections carry.
"""

from __future__ import annotations

import json as json_module
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

import httpx

__all__ = [
    "HeaderTypes",
    "InformationalResponse",
    "RequestDescriptor",
    "ResponseDescriptor",
]

HeaderTypes = Union[
    httpx.Headers,
    Mapping[str, str],
    Sequence[tuple[str, str]],
    Sequence[tuple[bytes, bytes]],
]


@dataclass(frozen=True)
class RequestDescriptor:
    """An HTTP request to be sent obliviously to its target."""

    method: str
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    trailers: httpx.Headers = field(default_factory=httpx.Headers)

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        headers: HeaderTypes | None = None,
        body: bytes | str | None = None,
    ) -> RequestDescriptor:
        """Build a request from loose inputs (mapping or pair list, str or bytes body)."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(
            method=method.upper(),
            url=url,
            headers=httpx.Headers(headers),
            body=body or b"",
        )

    # Components are read through httpx.URL: non-ASCII paths and queries are
    # percent-encoded and hosts IDNA-encoded. Raises httpx.InvalidURL.

    @property
    def scheme(self) -> str:
        return httpx.URL(self.url).raw_scheme.decode("ascii")

    @property
    def authority(self) -> str:
        # Userinfo never travels in the authority field
        url = httpx.URL(self.url)
        host = url.raw_host.decode("ascii")
        if ":" in host:
            host = f"[{host}]"
        return host if url.port is None else f"{host}:{url.port}"

    @property
    def path(self) -> str:
        # Query included, fragment dropped, empty path becomes "/"
        return httpx.URL(self.url).raw_path.decode("ascii")


@dataclass(frozen=True)
class InformationalResponse:
    """A 1xx interim response that preceded the final one."""

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)


@dataclass(frozen=True)
class ResponseDescriptor:
    """The decoded response from the target."""

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    trailers: httpx.Headers = field(default_factory=httpx.Headers)
    informational: tuple[InformationalResponse, ...] = ()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json_module.loads(self.body)
