"""
squidcache - e2e harness and task runner for a Squid caching proxy on Kubernetes.

The harness proves caching behaviour through observable HTTP responses: a
counting origin server, a client pinned to the proxy, and cache-buster query
strings that keep parallel tests apart.
"""

__version__ = "0.1.0"

from squidcache.cache_buster import generate as generate_cache_buster
from squidcache.config import Settings, service_proxy_url
from squidcache.errors import (
    ConfigError,
    ReadinessTimeout,
    SocketBindError,
    SquidCacheError,
    TaskError,
    TransportError,
)
from squidcache.proxy_client import ProxyClient
from squidcache.test_server import TestServer, TestServerResponse

__all__ = [
    "__version__",
    "ConfigError",
    "ProxyClient",
    "ReadinessTimeout",
    "Settings",
    "SocketBindError",
    "SquidCacheError",
    "TaskError",
    "TestServer",
    "TestServerResponse",
    "TransportError",
    "generate_cache_buster",
    "service_proxy_url",
]
