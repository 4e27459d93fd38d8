"""Helm release and namespace helpers."""

import logging
import time

from squidcache import shell

LOG = logging.getLogger("squidcache.helm")

NAMESPACE_DELETE_TIMEOUT = 60


def release_exists(name: str, namespace: str | None = None) -> bool:
    cmd = ["helm", "status", name]
    if namespace:
        cmd += ["--namespace", namespace]
    return shell.succeeds(*cmd)


def ensure_helm_repo(name: str, url: str) -> None:
    LOG.info("Ensuring helm repository name=%s url=%s", name, url)
    shell.run("helm", "repo", "add", name, url, "--force-update")


def upgrade_install(release: str, chart: str, namespace: str, *, values: tuple[str, ...] = (), sets: tuple[str, ...] = (), timeout: str = "5m") -> None:
    cmd = [
        "helm", "upgrade", "--install", release, chart,
        "--namespace", namespace,
        "--create-namespace",
        "--wait",
        "--timeout", timeout,
    ]
    for path in values:
        cmd += ["--values", path]
    for item in sets:
        cmd += ["--set", item]
    shell.run(*cmd)


def uninstall(release: str, namespace: str) -> None:
    shell.run("helm", "uninstall", release, "--namespace", namespace, "--wait")


def namespace_exists(namespace: str) -> bool:
    return shell.succeeds("kubectl", "get", "namespace", namespace)


def delete_namespace(namespace: str) -> None:
    shell.run("kubectl", "delete", "namespace", namespace, "--ignore-not-found", "--wait=false")


def wait_for_namespace_deleted(namespace: str, timeout: float = NAMESPACE_DELETE_TIMEOUT, sleep=time.sleep) -> bool:
    """Poll once a second until the namespace is gone; False on timeout."""
    LOG.info("Waiting for namespace to be fully deleted namespace=%s", namespace)
    for _ in range(int(timeout)):
        if not namespace_exists(namespace):
            LOG.info("Namespace deleted namespace=%s", namespace)
            return True
        sleep(1)
    return False
