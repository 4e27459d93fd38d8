"""kind cluster helpers."""

from squidcache import shell

CLUSTER_NAME = "caching"
CREATE_WAIT = "60s"


def cluster_exists(name: str) -> bool:
    clusters = shell.output("kind", "get", "clusters")
    return any(line.strip() == name for line in clusters.splitlines())


def create_cluster(name: str) -> None:
    shell.run("kind", "create", "cluster", "--name", name, "--wait", CREATE_WAIT)


def delete_cluster(name: str) -> None:
    shell.run("kind", "delete", "cluster", "--name", name)


def export_kubeconfig(name: str) -> None:
    shell.run("kind", "export", "kubeconfig", "--name", name)


def context_name(name: str) -> str:
    return f"kind-{name}"


def get_cluster_info(name: str) -> str:
    return shell.output("kubectl", "cluster-info", "--context", context_name(name))


def get_node_status(name: str) -> None:
    shell.run("kubectl", "get", "nodes", "--context", context_name(name))


def load_image_archive(name: str, archive: str) -> None:
    shell.run("kind", "load", "image-archive", archive, "--name", name)
