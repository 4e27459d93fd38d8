"""Thin wrappers around subprocess for the task runner."""

import logging
import shlex
import subprocess

from squidcache.errors import TaskError

LOG = logging.getLogger("squidcache.shell")


def _exec(cmd: list[str], capture: bool) -> subprocess.CompletedProcess:
    LOG.debug("exec: %s", shlex.join(cmd))
    try:
        return subprocess.run(cmd, capture_output=capture, text=True, check=False)
    except FileNotFoundError as exc:
        raise TaskError(cmd, 127, str(exc)) from exc


def run(*cmd: str) -> None:
    """Run a command with inherited stdio; raises TaskError on a non-zero exit."""
    argv = list(cmd)
    proc = _exec(argv, capture=False)
    if proc.returncode != 0:
        raise TaskError(argv, proc.returncode)


def output(*cmd: str) -> str:
    """Run a command and return its stripped stdout."""
    argv = list(cmd)
    proc = _exec(argv, capture=True)
    if proc.returncode != 0:
        raise TaskError(argv, proc.returncode, (proc.stderr or proc.stdout or "").strip())
    return (proc.stdout or "").strip()


def succeeds(*cmd: str) -> bool:
    """True if the command exits zero. Output is discarded."""
    argv = list(cmd)
    try:
        proc = _exec(argv, capture=True)
    except TaskError:
        return False
    return proc.returncode == 0
