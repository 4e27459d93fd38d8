"""HTTP client that sends every request through the Squid proxy under test."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TYPE_CHECKING

import requests
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url
from werkzeug.datastructures import ResponseCacheControl
from werkzeug.http import parse_cache_control_header

from squidcache.config import service_proxy_url
from squidcache.errors import ConfigError, TransportError
from squidcache.test_server import CACHE_CONTROL, CONTENT_TYPE, TestServerResponse

if TYPE_CHECKING:
    from squidcache.test_server import TestServer

LOG = logging.getLogger("squidcache.proxy_client")

REQUEST_TIMEOUT = 30
CHUNK_SIZE = 8192
EXPECTED_MAX_AGE = 300


def _validate_proxy_url(proxy_url: str) -> str:
    try:
        parsed = parse_url(proxy_url)
        port = parsed.port
    except (LocationParseError, ValueError) as exc:
        raise ConfigError(f"Failed to parse proxy URL {proxy_url!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigError(f"Failed to parse proxy URL {proxy_url!r}: scheme and host are required")
    if port is not None and not 0 < port <= 65535:
        raise ConfigError(f"Failed to parse proxy URL {proxy_url!r}: invalid port {port}")
    return proxy_url


class ProxyClient:
    """One client per test; each request opens a fresh connection to the proxy."""

    def __init__(self, proxy_url: str, timeout: float = REQUEST_TIMEOUT) -> None:
        self.proxy_url = _validate_proxy_url(proxy_url)
        self.timeout = timeout
        self.session = requests.Session()
        # Ignore HTTP_PROXY/NO_PROXY from the environment so nothing bypasses the proxy.
        self.session.trust_env = False
        self.session.proxies = {"http": self.proxy_url, "https": self.proxy_url}
        self.session.headers["Connection"] = "close"

    @classmethod
    def for_service(cls, service_name: str, namespace: str, timeout: float = REQUEST_TIMEOUT) -> "ProxyClient":
        return cls(service_proxy_url(service_name, namespace), timeout=timeout)

    def get(self, url: str, *, check: bool = False) -> tuple[requests.Response, bytes]:
        """GET `url` through the proxy and return the response with its full body.

        `timeout` bounds the whole exchange, from connect to the last body
        byte. A proxy or origin that trickles data past it raises
        TransportError even though every individual read is quick.
        """
        deadline = time.monotonic() + self.timeout
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="squidcache-get")
        try:
            future = pool.submit(self._fetch, url, deadline)
            resp, body = future.result(timeout=self.timeout)
            if check:
                resp.raise_for_status()
        except FutureTimeout as exc:
            raise TransportError(
                f"Request to {url} via {self.proxy_url} exceeded the {self.timeout}s deadline"
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} via {self.proxy_url} failed: {exc}") from exc
        finally:
            # A timed-out worker ends with its next read; nobody waits for it.
            pool.shutdown(wait=False)
        LOG.debug("GET %s via=%s status=%d bytes=%d", url, self.proxy_url, resp.status_code, len(body))
        return resp, body

    def _fetch(self, url: str, deadline: float) -> tuple[requests.Response, bytes]:
        resp = self.session.get(url, timeout=self.timeout, stream=True)
        try:
            chunks = []
            for chunk in resp.iter_content(CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise TransportError(f"Body of {url} still arriving after the {self.timeout}s deadline")
                chunks.append(chunk)
        finally:
            resp.close()
        body = b"".join(chunks)
        # Keep resp.content usable after streaming.
        resp._content = body
        return resp, body

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ProxyClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def parse_response(body: bytes) -> TestServerResponse:
    return TestServerResponse.parse(body)


def validate_cache_hit(original: TestServerResponse, cached: TestServerResponse, expected_request_id: int) -> None:
    """Assert `cached` is the proxy's copy of `original`, not a fresh origin response."""
    assert cached.request_id == expected_request_id, (
        f"Cached response should have same request_id as original: "
        f"got {cached.request_id}, expected {expected_request_id}"
    )
    assert cached.timestamp == original.timestamp, (
        f"Cached response should preserve original timestamp: {cached.timestamp} != {original.timestamp}"
    )
    assert cached.server_hits == original.server_hits, (
        f"Cached response should show same server hit count: {cached.server_hits} != {original.server_hits}"
    )


def validate_cache_headers(resp: requests.Response) -> None:
    cache_control = resp.headers.get("Cache-Control", "")
    parsed = parse_cache_control_header(cache_control, cls=ResponseCacheControl)
    assert parsed.public and parsed.max_age == EXPECTED_MAX_AGE, (
        f"Response should have cache control headers {CACHE_CONTROL!r}, got {cache_control!r}"
    )
    content_type = resp.headers.get("Content-Type")
    assert content_type == CONTENT_TYPE, (
        f"Response should have correct content type {CONTENT_TYPE!r}, got {content_type!r}"
    )


def validate_server_hit(response: TestServerResponse, expected_request_id: int, server: "TestServer") -> None:
    assert response.request_id == expected_request_id, (
        f"Request should have expected request ID: got {response.request_id}, expected {expected_request_id}"
    )
    count = server.get_request_count()
    assert count == expected_request_id, (
        f"Server should have received expected number of requests: got {count}, expected {expected_request_id}"
    )
