"""
``ohttpc``: a curl-like command that sends one request through an OHTTP gateway.

Usage:
    ohttpc -g https://relay.example/gateway -k https://relay.example/ohttp-configs \\
        -H "Accept: application/json" -j https://example.com/api
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence

from ohttp_client import __version__
from ohttp_client._logging import enable_debug_logging
from ohttp_client.client import OHTTPConfig, do_request
from ohttp_client.exceptions import OHTTPError
from ohttp_client.messages import RequestDescriptor, ResponseDescriptor

__all__ = [
    "build_parser",
    "main",
    "parse_header",
]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ohttpc", description="OHTTP curl-like client")
    parser.add_argument("url", nargs="?", help="Target URL")
    parser.add_argument("-t", "--target", help="Target URL (wins over the positional URL)")
    parser.add_argument("-g", "--gateway", help="OHTTP gateway URL (default: $OHTTP_GATEWAY_URL)")
    parser.add_argument("-k", "--keys", help="OHTTP key config URL (default: $OHTTP_KEYS_URL)")
    parser.add_argument("-X", "--request", dest="method", default="GET", help="HTTP method (default: GET)")
    parser.add_argument("-d", "--data", default="", help="Request body")
    parser.add_argument(
        "-H",
        "--header",
        dest="headers",
        action="append",
        default=[],
        metavar="'NAME: VALUE'",
        help="Request header, repeatable",
    )
    parser.add_argument("-j", "--json", action="store_true", help="Pretty print a JSON response body")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print progress of each step")
    parser.add_argument("--timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--debug", action="store_true", help="Debug logging to stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_header(raw: str) -> tuple[str, str] | None:
    """Split ``Name: Value``; strings without a colon are ignored."""
    name, sep, value = raw.partition(":")
    if not sep:
        return None
    return name.strip(), value.strip()


def _format_body(response: ResponseDescriptor, pretty_json: bool) -> str:
    if pretty_json:
        try:
            return json.dumps(response.json(), indent=2, ensure_ascii=False)
        except ValueError:
            pass
    return response.text


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        enable_debug_logging(sys.stderr)

    try:
        target = args.target or args.url
        if not target:
            raise ValueError("target URL not specified")
        config = OHTTPConfig.from_env(
            gateway_url=args.gateway,
            key_config_url=args.keys,
            verbose=args.verbose or None,
            timeout=args.timeout,
        )
        headers = [h for h in map(parse_header, args.headers) if h is not None]
        request = RequestDescriptor.build(args.method, target, headers=headers, body=args.data)
        response = do_request(config, request)
    except (OHTTPError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print(f"> {request.method} {request.url}")
        for name, value in request.headers.multi_items():
            print(f"> {name}: {value}")
        print()

    print(f"< HTTP {response.status}")
    print(_format_body(response, args.json))
    return 0


if __name__ == "__main__":
    sys.exit(main())
