"""Fixtures for the in-cluster end-to-end suite.

These tests must run in a pod on the cluster network: the Squid proxy has to
reach the test server at POD_IP, and the proxy is only resolvable through
cluster DNS.
"""

import logging

import pytest

from squidcache.config import Settings
from squidcache.probe import Probe, load_cluster_config
from squidcache.proxy_client import ProxyClient
from squidcache.test_server import TestServer

LOG = logging.getLogger("squidcache.e2e")

TEST_SERVER_MESSAGE = "Hello from test server"


@pytest.fixture(scope="session")
def settings() -> Settings:
    return Settings.from_env()


@pytest.fixture(scope="session")
def probe(settings):
    source = load_cluster_config(settings.kubeconfig)
    LOG.info("Using cluster credentials from %s", source)
    p = Probe(timeout=settings.probe_timeout, interval=settings.probe_interval)
    p.check_connection()
    return p


@pytest.fixture
def test_server(settings):
    server = TestServer(TEST_SERVER_MESSAGE, settings.require_pod_ip(), settings.test_server_port)
    yield server
    server.close()


@pytest.fixture
def proxy_client(settings):
    client = ProxyClient.for_service(settings.service_name, settings.namespace)
    yield client
    client.close()
