"""Command-line task runner for the Squid caching proxy development cycle."""

import logging
import os
import signal
import sys
import tempfile
import threading

import click

from squidcache import helm, kind, shell
from squidcache.config import DEFAULT_NAMESPACE, DEFAULT_STANDALONE_PORT
from squidcache.errors import ConfigError, SocketBindError, TaskError

DEFAULT_IMAGE = "localhost/konflux-ci/squid:latest"
DEFAULT_CONTAINERFILE = "Containerfile"
DEFAULT_CHART = "./squid"
DEFAULT_RELEASE = "squid"
DEFAULT_E2E_PATH = "tests/e2e"


def _ok(message: str) -> None:
    click.secho(message, fg="green")


def _warn(message: str) -> None:
    click.secho(message, fg="yellow", err=True)


class TaskGroup(click.Group):
    """Turns a failed external command into a one-line error and exit code 1."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except TaskError as exc:
            raise click.ClickException(str(exc)) from exc


cluster_option = click.option(
    "--cluster",
    default=kind.CLUSTER_NAME,
    envvar="SQUIDCACHE_CLUSTER",
    show_default=True,
    help="kind cluster name (env: SQUIDCACHE_CLUSTER)",
)
image_option = click.option(
    "--image",
    default=DEFAULT_IMAGE,
    envvar="SQUIDCACHE_IMAGE",
    show_default=True,
    help="Squid image tag (env: SQUIDCACHE_IMAGE)",
)
namespace_option = click.option(
    "-n", "--namespace",
    default=DEFAULT_NAMESPACE,
    envvar="SQUIDCACHE_NAMESPACE",
    show_default=True,
    help="Namespace the chart is deployed to (env: SQUIDCACHE_NAMESPACE)",
)
chart_option = click.option(
    "--chart",
    default=DEFAULT_CHART,
    envvar="SQUIDCACHE_CHART",
    show_default=True,
    help="Chart path or reference (env: SQUIDCACHE_CHART)",
)
release_option = click.option(
    "--release",
    default=DEFAULT_RELEASE,
    envvar="SQUIDCACHE_RELEASE",
    show_default=True,
    help="Helm release name (env: SQUIDCACHE_RELEASE)",
)


@click.group(cls=TaskGroup)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose logging"
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging, including every executed command"
)
@click.version_option(package_name="squidcache")
def main(verbose, debug):
    """
    Squid caching proxy task runner.

    Creates a kind cluster, builds and loads the Squid image, deploys the
    Helm chart and runs the end-to-end suite against it.

    \b
    Examples:
        # Full workflow
        squidcache all

        # Recreate the cluster from scratch
        squidcache kind up-clean

        # Run the e2e suite with a fixed seed
        squidcache test -- --run-seed 1234
    """
    if debug:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.basicConfig(level=logging.INFO)


# ---------------------------------------------------------------------------
# kind
# ---------------------------------------------------------------------------


@main.group("kind", cls=TaskGroup)
def kind_group():
    """Manage the kind cluster."""


def _create_and_export(cluster: str) -> None:
    click.echo(f"Creating kind cluster '{cluster}'...")
    kind.create_cluster(cluster)
    _ok(f"Cluster '{cluster}' created successfully")
    click.echo(f"Exporting kubeconfig for cluster '{cluster}'...")
    kind.export_kubeconfig(cluster)


@kind_group.command("up")
@cluster_option
def kind_up(cluster):
    """Create the kind cluster if it does not exist and export its kubeconfig."""
    click.echo("Setting up kind cluster...")
    if kind.cluster_exists(cluster):
        _ok(f"Cluster '{cluster}' already exists")
        click.echo(f"Exporting kubeconfig for cluster '{cluster}'...")
        kind.export_kubeconfig(cluster)
    else:
        _create_and_export(cluster)
    _ok(f"Kind cluster '{cluster}' is ready!")


@kind_group.command("up-clean")
@cluster_option
def kind_up_clean(cluster):
    """Delete any existing kind cluster and create a new one."""
    click.echo("Setting up kind cluster (clean recreation)...")
    if kind.cluster_exists(cluster):
        click.echo(f"Deleting existing cluster '{cluster}'...")
        kind.delete_cluster(cluster)
        _ok(f"Cluster '{cluster}' deleted successfully")
    _create_and_export(cluster)
    _ok(f"Kind cluster '{cluster}' is ready!")


@kind_group.command("down")
@cluster_option
def kind_down(cluster):
    """Delete the kind cluster."""
    click.echo("Tearing down kind cluster...")
    if not kind.cluster_exists(cluster):
        click.echo(f"Cluster '{cluster}' does not exist")
        return
    click.echo(f"Deleting kind cluster '{cluster}'...")
    kind.delete_cluster(cluster)
    _ok(f"Cluster '{cluster}' deleted successfully")


@kind_group.command("status")
@cluster_option
def kind_status(cluster):
    """Show whether the cluster exists, is reachable, and its node status."""
    click.echo("Checking kind cluster status...")
    if not kind.cluster_exists(cluster):
        _warn(f"Cluster '{cluster}' does not exist")
        return
    _ok(f"Cluster '{cluster}' exists")
    click.echo("Checking cluster connectivity...")
    try:
        info = kind.get_cluster_info(cluster)
    except TaskError as exc:
        _warn(f"Could not connect to cluster: {exc}")
        _warn("Try running 'squidcache kind up' to ensure kubeconfig is exported")
        return
    _ok(f"Cluster is accessible:\n{info}")
    click.echo("Node status:")
    try:
        kind.get_node_status(cluster)
    except TaskError as exc:
        _warn(f"Could not get node status: {exc}")


# ---------------------------------------------------------------------------
# build
# ---------------------------------------------------------------------------


@main.group("build", cls=TaskGroup)
def build_group():
    """Build and load container images."""


@build_group.command("squid")
@image_option
@click.option(
    "-f", "--containerfile",
    default=DEFAULT_CONTAINERFILE,
    show_default=True,
    help="Containerfile to build from"
)
@click.option("--context", "build_context", default=".", show_default=True, help="Build context directory")
def build_squid(image, containerfile, build_context):
    """Build the Squid container image with podman."""
    click.echo(f"Building image with tag '{image}'...")
    shell.run("podman", "build", "-t", image, "-f", containerfile, build_context)
    _ok("Squid image built successfully")
    click.echo("Verifying image exists...")
    shell.run("podman", "images", image)
    _ok(f"Squid image '{image}' is ready!")


@build_group.command("load-squid")
@image_option
@cluster_option
def build_load_squid(image, cluster):
    """Load the Squid image into the kind cluster."""
    click.echo("Loading Squid image into kind cluster...")
    if not kind.cluster_exists(cluster):
        raise click.ClickException(f"Cluster '{cluster}' does not exist, run 'squidcache kind up' first")
    with tempfile.TemporaryDirectory(prefix="squidcache-") as tmp:
        archive = os.path.join(tmp, "squid-image.tar")
        shell.run("podman", "save", "-o", archive, image)
        kind.load_image_archive(cluster, archive)
    _ok(f"Image '{image}' loaded into cluster '{cluster}'")


# ---------------------------------------------------------------------------
# deploy
# ---------------------------------------------------------------------------


@main.group("deploy", cls=TaskGroup)
def deploy_group():
    """Deploy the Squid Helm chart."""


@deploy_group.command("helm")
@chart_option
@release_option
@namespace_option
@click.option("--values", "values_files", multiple=True, type=click.Path(exists=True, dir_okay=False), help="Extra values file")
@click.option("--set", "set_values", multiple=True, help="Extra chart value, e.g. replicaCount=2")
@click.option("--timeout", default="5m", show_default=True, help="helm --wait timeout")
@click.option("--repo", "repos", multiple=True, metavar="NAME=URL", help="Helm repository to add before installing")
def deploy_helm(chart, release, namespace, values_files, set_values, timeout, repos):
    """Install or upgrade the chart and wait for it to become ready."""
    for repo in repos:
        name, sep, url = repo.partition("=")
        if not sep or not name or not url:
            raise click.BadParameter(f"expected NAME=URL, got {repo!r}", param_hint="--repo")
        helm.ensure_helm_repo(name, url)
    click.echo(f"Deploying chart '{chart}' as release '{release}' into namespace '{namespace}'...")
    helm.upgrade_install(release, chart, namespace, values=values_files, sets=set_values, timeout=timeout)
    _ok(f"Release '{release}' deployed")


@deploy_group.command("status")
@namespace_option
def deploy_status(namespace):
    """Show pods and services in the deployment namespace."""
    click.echo("Checking deployment status...")
    click.echo("Pods:")
    shell.run("kubectl", "get", "pods", "--namespace", namespace, "-o", "wide")
    click.echo("Services:")
    shell.run("kubectl", "get", "services", "--namespace", namespace)


@deploy_group.command("uninstall")
@release_option
@namespace_option
def deploy_uninstall(release, namespace):
    """Uninstall the release and delete its namespace."""
    if not helm.release_exists(release, namespace):
        click.echo(f"Release '{release}' is not installed")
        return
    click.echo(f"Uninstalling release '{release}'...")
    helm.uninstall(release, namespace)
    helm.delete_namespace(namespace)
    if not helm.wait_for_namespace_deleted(namespace):
        raise click.ClickException(f"Timeout waiting for namespace '{namespace}' to be deleted")
    _ok(f"Namespace '{namespace}' has been deleted")


# ---------------------------------------------------------------------------
# workflow
# ---------------------------------------------------------------------------


@main.command("test", context_settings={"ignore_unknown_options": True})
@click.option("--path", "test_path", default=DEFAULT_E2E_PATH, show_default=True, help="e2e test directory")
@click.argument("pytest_args", nargs=-1, type=click.UNPROCESSED)
def run_tests(test_path, pytest_args):
    """Run the end-to-end suite against the deployed proxy."""
    click.echo("Running e2e tests...")
    shell.run(sys.executable, "-m", "pytest", test_path, "-m", "e2e", *pytest_args)


@main.command("all")
@cluster_option
@image_option
@chart_option
@release_option
@namespace_option
@click.pass_context
def run_all(ctx, cluster, image, chart, release, namespace):
    """Run the complete workflow: cluster, image, chart, status."""
    click.echo("Running complete automation workflow...")
    ctx.invoke(kind_up, cluster=cluster)
    ctx.invoke(build_squid, image=image)
    ctx.invoke(build_load_squid, image=image, cluster=cluster)
    ctx.invoke(deploy_helm, chart=chart, release=release, namespace=namespace)
    ctx.invoke(deploy_status, namespace=namespace)
    _ok("Workflow complete")


@main.command("clean")
@cluster_option
@image_option
@release_option
@namespace_option
@click.pass_context
def run_clean(ctx, cluster, image, release, namespace):
    """Remove the release, the cluster and the built image."""
    click.echo("Cleaning up all resources...")
    if kind.cluster_exists(cluster):
        ctx.invoke(deploy_uninstall, release=release, namespace=namespace)
        ctx.invoke(kind_down, cluster=cluster)
    else:
        click.echo(f"Cluster '{cluster}' does not exist")
    try:
        shell.run("podman", "rmi", "--force", image)
    except TaskError as exc:
        _warn(f"Could not remove image '{image}': {exc}")
    _ok("Cleanup complete")


@main.command("test-server")
@click.option(
    "--message",
    default="Hello from test server",
    show_default=True,
    help="Message to include in responses"
)
def test_server(message):
    """
    Run the cacheable origin server until interrupted.

    Requires POD_IP. Listens on TEST_SERVER_PORT, or 9090 when unset.
    """
    from squidcache.test_server import TestServer

    try:
        server = TestServer.from_env(message, strict_port=True, default_port=DEFAULT_STANDALONE_PORT)
    except (ConfigError, SocketBindError) as exc:
        raise click.ClickException(str(exc)) from exc

    stop = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop.set())
    click.echo(f"Server Pod IP: {server.pod_ip}")
    click.echo(f"Message: {message}")
    _ok(f"Server listening on {server.url}")
    try:
        stop.wait()
    finally:
        server.close()


if __name__ == "__main__":
    main()
