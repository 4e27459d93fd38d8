"""Query strings that keep parallel tests from sharing proxy cache entries.

A buster combines the test name, a nanosecond timestamp, the host name, 64
random bits and the run seed, so it stays unique across workers, pods and
runs while still saying where it came from.
"""

import logging
import os
import secrets
import socket
import threading
import time
from urllib.parse import quote

LOG = logging.getLogger("squidcache.cache_buster")

_seed_lock = threading.Lock()
_run_seed: int | None = None


def new_run_seed() -> int:
    env_seed = os.environ.get("SQUIDCACHE_RUN_SEED", "").strip()
    if env_seed.isdigit():
        return int(env_seed)
    try:
        return secrets.randbelow(10**9)
    except (OSError, NotImplementedError):
        return time.time_ns() % 10**9


def set_run_seed(seed: int) -> None:
    """Pin the seed reported by every buster in this process."""
    global _run_seed
    with _seed_lock:
        _run_seed = int(seed)


def run_seed() -> int:
    global _run_seed
    with _seed_lock:
        if _run_seed is None:
            _run_seed = new_run_seed()
        return _run_seed


def _hostname() -> str:
    try:
        name = socket.gethostname()
    except OSError:
        return "unknown"
    return name or "unknown"


def _random_hex(nanos: int) -> str:
    try:
        return secrets.token_hex(8)
    except (OSError, NotImplementedError) as exc:
        LOG.warning("Random source unavailable, using time-derived entropy error=%s", exc)
        return f"{nanos & 0xFFFFFFFFFFFFFFFF:016x}"


def generate(test_name: str) -> str:
    """Return ``test=<name>&t=<nanos>&host=<host>&rand=<hex>&seed=<seed>``."""
    nanos = time.time_ns()
    return "test={}&t={}&host={}&rand={}&seed={}".format(
        quote(str(test_name), safe=""),
        nanos,
        quote(_hostname(), safe=""),
        _random_hex(nanos),
        run_seed(),
    )

