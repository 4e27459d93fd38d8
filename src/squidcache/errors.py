"""Exception types raised by the squidcache harness."""


class SquidCacheError(Exception):
    pass


class ConfigError(SquidCacheError):
    """Missing or malformed configuration (POD_IP, TEST_SERVER_PORT, proxy URL, kubeconfig)."""


class SocketBindError(SquidCacheError):
    """The test server listener could not be created."""


class TransportError(SquidCacheError):
    """Proxy connect refused, timeout, or malformed response."""


class ReadinessTimeout(SquidCacheError):
    """A probe deadline elapsed before its predicate held."""

    def __init__(self, description: str, timeout: float, last_snapshot=None, last_error: Exception | None = None):
        self.description = description
        self.timeout = timeout
        self.last_snapshot = last_snapshot
        self.last_error = last_error
        detail = f"last_snapshot={last_snapshot!r}"
        if last_error is not None:
            detail += f" last_error={last_error!r}"
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}: {detail}")


class TaskError(SquidCacheError):
    """An external command run by the task runner failed."""

    def __init__(self, cmd: list[str], returncode: int, output: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command {' '.join(cmd)!r} failed with exit code {returncode}")
