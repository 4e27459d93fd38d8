"""End-to-end tests for the Squid Helm chart deployment and its HTTP caching."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from squidcache import cache_buster
from squidcache.proxy_client import (
    parse_response,
    validate_cache_headers,
    validate_cache_hit,
    validate_server_hit,
)

LOG = logging.getLogger("squidcache.e2e")

pytestmark = pytest.mark.e2e

SQUID_POD_SELECTOR = "app.kubernetes.io/name=squid,app.kubernetes.io/component notin (test,mirrord-target)"
SQUID_LABEL = ("app.kubernetes.io/name", "squid")
CONCURRENT_REQUESTS = 50


class TestNamespace:
    def test_proxy_namespace_is_active(self, probe, settings):
        ns = probe.get_namespace(settings.namespace)
        assert ns.name == settings.namespace
        assert ns.phase == "Active"


class TestDeployment:
    def test_exists_and_is_configured(self, probe, settings):
        dep = probe.get_deployment(settings.namespace, settings.deployment_name)
        assert dep.name == settings.deployment_name
        assert dep.namespace == settings.namespace
        assert dep.replicas is not None and dep.replicas >= 1
        assert dep.selector_labels.get(SQUID_LABEL[0]) == SQUID_LABEL[1]

    def test_ready_and_available(self, probe, settings):
        dep = probe.wait_for_deployment_ready(settings.namespace, settings.deployment_name)
        assert dep.ready_replicas == dep.available_replicas == dep.replicas

    def test_container_image_and_port(self, probe, settings):
        dep = probe.get_deployment(settings.namespace, settings.deployment_name)
        assert dep.container_count == 1
        assert dep.container_name == "squid"
        assert "konflux-ci/squid" in (dep.container_image or "")
        assert dep.container_port_count == 1
        assert dep.container_port == 3128
        assert dep.container_port_name == "http"


class TestService:
    def test_exists_and_is_cluster_ip(self, probe, settings):
        svc = probe.get_service(settings.namespace, settings.service_name)
        assert svc.name == settings.service_name
        assert svc.namespace == settings.namespace
        assert svc.type == "ClusterIP"
        assert svc.selector_labels.get(SQUID_LABEL[0]) == SQUID_LABEL[1]

    def test_port_configuration(self, probe, settings):
        svc = probe.get_service(settings.namespace, settings.service_name)
        assert len(svc.ports) == 1
        port = svc.ports[0]
        assert port.port == 3128
        assert port.target_port == "http"
        assert port.protocol == "TCP"

    def test_endpoints_ready(self, probe, settings):
        assert probe.wait_for_endpoints(settings.namespace, settings.service_name)


class TestPods:
    @pytest.fixture
    def squid_pods(self, probe, settings):
        pods = probe.get_pods(settings.namespace, SQUID_POD_SELECTOR)
        assert pods, "No squid pods found"
        return pods

    def test_running_and_ready(self, probe, settings, squid_pods):
        for pod in squid_pods:
            current = probe.wait_for_pod_ready(settings.namespace, pod.name)
            assert current.phase == "Running", f"Pod {pod.name} should be running"
            assert current.ready, f"Pod {pod.name} should be ready"

    def test_runs_as_non_root(self, squid_pods):
        for pod in squid_pods:
            assert len(pod.containers) == 1
            container = pod.containers[0]
            assert container.name == "squid"
            if container.has_security_context:
                assert container.run_as_non_root is True, f"Pod {pod.name} should run as non-root"

    def test_squid_configuration_mounted(self, squid_pods):
        for pod in squid_pods:
            mounts = pod.containers[0].volume_mounts
            assert any(
                m.name == "squid-config" or m.mount_path == "/etc/squid/squid.conf" for m in mounts
            ), f"Pod {pod.name} should have squid configuration mounted"


class TestConfigMap:
    def test_contains_squid_configuration(self, probe, settings):
        data = probe.get_config_map(settings.namespace, settings.config_map_name)
        assert "squid.conf" in data
        squid_conf = data["squid.conf"]
        assert "http_port 3128" in squid_conf
        assert "acl localnet src" in squid_conf


class TestHttpCaching:
    def test_serves_repeated_request_from_cache(self, test_server, proxy_client):
        url = f"{test_server.url}?{cache_buster.generate('cache-basic')}"

        resp1, body1 = proxy_client.get(url)
        LOG.info("First response status=%d url=%s body=%s", resp1.status_code, url, body1)
        assert resp1.status_code == 200
        response1 = parse_response(body1)
        validate_server_hit(response1, 1, test_server)
        assert response1.server_hits == 1

        time.sleep(0.1)

        resp2, body2 = proxy_client.get(url)
        assert resp2.status_code == 200
        response2 = parse_response(body2)
        validate_cache_hit(response1, response2, 1)
        assert test_server.get_request_count() == 1, "Server should still have received only 1 request"
        assert body2 == body1, "Cached response should be identical to original"

        validate_cache_headers(resp1)
        validate_cache_headers(resp2)

    def test_repeated_requests_hit_origin_once(self, test_server, proxy_client):
        url = f"{test_server.url}/repeat?{cache_buster.generate('cache-repeat')}"
        initial = test_server.get_request_count()
        bodies = [proxy_client.get(url)[1] for _ in range(5)]
        assert test_server.get_request_count() == initial + 1
        assert all(body == bodies[0] for body in bodies)

    def test_different_urls_are_cached_independently(self, test_server, proxy_client):
        buster = cache_buster.generate("urls")
        initial = test_server.get_request_count()

        proxy_client.get(f"{test_server.url}/endpoint1?{buster}&endpoint=1")
        assert test_server.get_request_count() == initial + 1

        proxy_client.get(f"{test_server.url}/endpoint2?{buster}&endpoint=2")
        assert test_server.get_request_count() == initial + 2, "Different URLs should not be cached together"

    def test_concurrent_requests_keep_counter_contiguous(self, test_server, proxy_client):
        # Shared buster: a fixed TEST_SERVER_PORT would otherwise hit an entry cached by an earlier run.
        url = f"{test_server.url}/concurrent?{cache_buster.generate('concurrent')}"

        def fetch(_):
            resp, body = proxy_client.get(url)
            assert resp.status_code == 200
            return parse_response(body)

        with ThreadPoolExecutor(max_workers=CONCURRENT_REQUESTS) as pool:
            responses = list(pool.map(fetch, range(CONCURRENT_REQUESTS)))

        misses = test_server.get_request_count()
        LOG.info("Concurrent requests=%d origin_hits=%d", CONCURRENT_REQUESTS, misses)
        assert 1 <= misses <= CONCURRENT_REQUESTS
        assert all(r.request_id == r.server_hits for r in responses)
        assert {r.request_id for r in responses} == set(range(1, misses + 1))
