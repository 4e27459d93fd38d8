"""Environment-driven settings shared by the harness, the e2e suite and the task runner."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from squidcache.errors import ConfigError

SQUID_PORT = 3128
DEFAULT_NAMESPACE = "proxy"
DEFAULT_SERVICE_NAME = "squid"
DEFAULT_DEPLOYMENT_NAME = "squid"
DEFAULT_CONFIG_MAP_NAME = "squid-config"
DEFAULT_STANDALONE_PORT = 9090
PROBE_TIMEOUT = 60.0
PROBE_INTERVAL = 2.0


def require_pod_ip(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    pod_ip = (env.get("POD_IP") or "").strip()
    if not pod_ip:
        raise ConfigError("POD_IP environment variable not set (requires downward API)")
    return pod_ip


def parse_port(value: str) -> int:
    """Parse a TCP port number; raises ConfigError for anything out of range."""
    try:
        port = int(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ConfigError(f"Invalid TEST_SERVER_PORT value {value!r}") from exc
    if not 0 <= port <= 65535:
        raise ConfigError(f"Invalid TEST_SERVER_PORT value {value!r}: out of range")
    return port


def server_port_from_env(environ: Mapping[str, str] | None = None, *, strict: bool = False, default: int = 0) -> int:
    """Port for the test server from TEST_SERVER_PORT.

    Unset means `default`. An unparseable value falls back to `default` unless
    `strict` is set, in which case it is a ConfigError.
    """
    env = os.environ if environ is None else environ
    raw = env.get("TEST_SERVER_PORT", "")
    if not raw.strip():
        return default
    try:
        return parse_port(raw)
    except ConfigError:
        if strict:
            raise
        return default


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name} value {raw!r}") from exc


@dataclass
class Settings:
    pod_ip: Optional[str] = None
    test_server_port: int = 0
    kubeconfig: Optional[str] = None
    namespace: str = DEFAULT_NAMESPACE
    service_name: str = DEFAULT_SERVICE_NAME
    deployment_name: str = DEFAULT_DEPLOYMENT_NAME
    config_map_name: str = DEFAULT_CONFIG_MAP_NAME
    probe_timeout: float = PROBE_TIMEOUT
    probe_interval: float = PROBE_INTERVAL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            pod_ip=(env.get("POD_IP") or "").strip() or None,
            test_server_port=server_port_from_env(env),
            kubeconfig=env.get("KUBECONFIG") or None,
            namespace=env.get("SQUIDCACHE_NAMESPACE") or DEFAULT_NAMESPACE,
            service_name=env.get("SQUIDCACHE_SERVICE") or DEFAULT_SERVICE_NAME,
            deployment_name=env.get("SQUIDCACHE_DEPLOYMENT") or DEFAULT_DEPLOYMENT_NAME,
            config_map_name=env.get("SQUIDCACHE_CONFIG_MAP") or DEFAULT_CONFIG_MAP_NAME,
            probe_timeout=_float_env(env, "SQUIDCACHE_PROBE_TIMEOUT", PROBE_TIMEOUT),
            probe_interval=_float_env(env, "SQUIDCACHE_PROBE_INTERVAL", PROBE_INTERVAL),
        )

    def require_pod_ip(self) -> str:
        if not self.pod_ip:
            raise ConfigError("POD_IP environment variable not set (requires downward API)")
        return self.pod_ip

    @property
    def proxy_url(self) -> str:
        return service_proxy_url(self.service_name, self.namespace)


def service_proxy_url(service_name: str, namespace: str, port: int = SQUID_PORT) -> str:
    return f"http://{service_name}.{namespace}.svc.cluster.local:{port}"
