"""Read-only cluster probes for the deployed Squid proxy.

Each read returns a small summary dataclass instead of the raw API model so
the e2e properties assert on plain values. Reads can be polled with
`Probe.wait_for` until a predicate holds.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from squidcache.config import PROBE_INTERVAL, PROBE_TIMEOUT
from squidcache.errors import ConfigError, ReadinessTimeout

LOG = logging.getLogger("squidcache.probe")

T = TypeVar("T")


@dataclass(frozen=True)
class NamespaceSummary:
    name: str
    phase: Optional[str]


@dataclass(frozen=True)
class VolumeMountSummary:
    name: str
    mount_path: str


@dataclass(frozen=True)
class ContainerSummary:
    name: str
    image: Optional[str]
    run_as_non_root: Optional[bool]
    has_security_context: bool
    volume_mounts: tuple[VolumeMountSummary, ...] = ()


@dataclass(frozen=True)
class PodSummary:
    name: str
    phase: Optional[str]
    ready: bool
    containers: tuple[ContainerSummary, ...] = ()


@dataclass(frozen=True)
class DeploymentSummary:
    name: str
    namespace: str
    replicas: Optional[int]
    ready_replicas: int
    available_replicas: int
    container_count: int
    container_name: Optional[str]
    container_image: Optional[str]
    container_port: Optional[int]
    container_port_name: Optional[str]
    container_port_count: int
    selector_labels: dict[str, str] = field(default_factory=dict)

    @property
    def is_ready(self) -> bool:
        return (
            self.replicas is not None
            and self.replicas >= 1
            and self.ready_replicas == self.replicas
            and self.available_replicas == self.replicas
        )


@dataclass(frozen=True)
class ServicePort:
    port: int
    target_port: int | str | None
    protocol: Optional[str]


@dataclass(frozen=True)
class ServiceSummary:
    name: str
    namespace: str
    type: Optional[str]
    selector_labels: dict[str, str]
    ports: tuple[ServicePort, ...]
    endpoints_ready: bool


def load_cluster_config(kubeconfig: str | None = None) -> str:
    """Configure the kubernetes client; returns the credential source used.

    In-cluster service account credentials win. Otherwise the kubeconfig at
    `kubeconfig`, $KUBECONFIG or ~/.kube/config is loaded.
    """
    try:
        config.load_incluster_config()
        LOG.info("k8s client configured from in-cluster service account")
        return "in-cluster"
    except config.ConfigException:
        pass
    path = kubeconfig or os.environ.get("KUBECONFIG") or os.path.join(os.path.expanduser("~"), ".kube", "config")
    try:
        config.load_kube_config(config_file=path)
    except (config.ConfigException, OSError) as exc:
        raise ConfigError(f"Failed to create kubeconfig from {path}: {exc}") from exc
    LOG.info("k8s client configured from kubeconfig path=%s", path)
    return path


def _pod_ready(pod) -> bool:
    for condition in (pod.status.conditions if pod.status else None) or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def _container_summary(container) -> ContainerSummary:
    security_context = container.security_context
    return ContainerSummary(
        name=container.name,
        image=container.image,
        run_as_non_root=security_context.run_as_non_root if security_context else None,
        has_security_context=security_context is not None,
        volume_mounts=tuple(
            VolumeMountSummary(name=m.name, mount_path=m.mount_path) for m in container.volume_mounts or []
        ),
    )


def summarize_pod(pod) -> PodSummary:
    containers = pod.spec.containers if pod.spec else None
    return PodSummary(
        name=pod.metadata.name,
        phase=pod.status.phase if pod.status else None,
        ready=_pod_ready(pod),
        containers=tuple(_container_summary(c) for c in containers or []),
    )


def summarize_deployment(deployment) -> DeploymentSummary:
    spec = deployment.spec
    status = deployment.status
    pod_spec = spec.template.spec if spec.template else None
    containers = (pod_spec.containers if pod_spec else None) or []
    first = containers[0] if containers else None
    ports = (first.ports or []) if first else []
    return DeploymentSummary(
        name=deployment.metadata.name,
        namespace=deployment.metadata.namespace,
        replicas=spec.replicas,
        ready_replicas=(status.ready_replicas if status else None) or 0,
        available_replicas=(status.available_replicas if status else None) or 0,
        container_count=len(containers),
        container_name=first.name if first else None,
        container_image=first.image if first else None,
        container_port=ports[0].container_port if ports else None,
        container_port_name=ports[0].name if ports else None,
        container_port_count=len(ports),
        selector_labels=dict((spec.selector.match_labels if spec.selector else None) or {}),
    )


class Probe:
    def __init__(
        self,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
        *,
        timeout: float = PROBE_TIMEOUT,
        interval: float = PROBE_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.core_v1 = core_v1 if core_v1 is not None else client.CoreV1Api()
        self.apps_v1 = apps_v1 if apps_v1 is not None else client.AppsV1Api()
        self.timeout = timeout
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def check_connection(self) -> None:
        self.core_v1.read_namespace("default")

    def get_namespace(self, name: str) -> NamespaceSummary:
        ns = self.core_v1.read_namespace(name)
        return NamespaceSummary(name=ns.metadata.name, phase=ns.status.phase if ns.status else None)

    def get_pods(self, namespace: str, label_selector: str) -> list[PodSummary]:
        pods = self.core_v1.list_namespaced_pod(namespace, label_selector=label_selector)
        return [summarize_pod(p) for p in pods.items or []]

    def get_pod(self, namespace: str, name: str) -> PodSummary:
        return summarize_pod(self.core_v1.read_namespaced_pod(name, namespace))

    def get_deployment(self, namespace: str, name: str) -> DeploymentSummary:
        return summarize_deployment(self.apps_v1.read_namespaced_deployment(name, namespace))

    def endpoints_ready(self, namespace: str, name: str) -> bool:
        endpoints = self.core_v1.read_namespaced_endpoints(name, namespace)
        return any(subset.addresses for subset in endpoints.subsets or [])

    def get_service(self, namespace: str, name: str) -> ServiceSummary:
        svc = self.core_v1.read_namespaced_service(name, namespace)
        try:
            ready = self.endpoints_ready(namespace, name)
        except ApiException as exc:
            if exc.status != 404:
                raise
            ready = False
        return ServiceSummary(
            name=svc.metadata.name,
            namespace=svc.metadata.namespace,
            type=svc.spec.type,
            selector_labels=dict(svc.spec.selector or {}),
            ports=tuple(
                ServicePort(port=p.port, target_port=p.target_port, protocol=p.protocol) for p in svc.spec.ports or []
            ),
            endpoints_ready=ready,
        )

    def get_config_map(self, namespace: str, name: str) -> dict[str, str]:
        cm = self.core_v1.read_namespaced_config_map(name, namespace)
        return dict(cm.data or {})

    def wait_for(
        self,
        read: Callable[[], T],
        predicate: Callable[[T], bool],
        *,
        description: str = "condition",
        timeout: float | None = None,
        interval: float | None = None,
    ) -> T:
        """Poll `read` until `predicate` holds on its result.

        Read errors from the API count as "not yet". When the deadline passes,
        ReadinessTimeout carries the last snapshot and last error seen.
        """
        timeout = self.timeout if timeout is None else timeout
        interval = self.interval if interval is None else interval
        deadline = self._clock() + timeout
        last_snapshot = None
        last_error: Exception | None = None
        while True:
            try:
                last_snapshot = read()
                last_error = None
                if predicate(last_snapshot):
                    return last_snapshot
            except (ApiException, HTTPError) as exc:
                last_error = exc
                LOG.debug("Probe read failed waiting for %s error=%s", description, exc)
            if self._clock() + interval > deadline:
                break
            self._sleep(interval)
        LOG.warning("Timed out waiting for %s last_snapshot=%r", description, last_snapshot)
        raise ReadinessTimeout(description, timeout, last_snapshot, last_error)

    def wait_for_deployment_ready(self, namespace: str, name: str, **kwargs) -> DeploymentSummary:
        return self.wait_for(
            lambda: self.get_deployment(namespace, name),
            lambda d: d.is_ready,
            description=f"deployment {namespace}/{name} to be ready and available",
            **kwargs,
        )

    def wait_for_endpoints(self, namespace: str, name: str, **kwargs) -> bool:
        return self.wait_for(
            lambda: self.endpoints_ready(namespace, name),
            bool,
            description=f"service {namespace}/{name} to have ready endpoints",
            **kwargs,
        )

    def wait_for_pod_ready(self, namespace: str, name: str, **kwargs) -> PodSummary:
        return self.wait_for(
            lambda: self.get_pod(namespace, name),
            lambda p: p.phase == "Running" and p.ready,
            description=f"pod {namespace}/{name} to be running and ready",
            **kwargs,
        )
