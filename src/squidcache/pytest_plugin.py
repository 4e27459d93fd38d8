"""pytest plugin: a per-run seed reported in the session header and used by cache busters."""

from squidcache import cache_buster


def pytest_addoption(parser):
    group = parser.getgroup("squidcache")
    group.addoption(
        "--run-seed",
        type=int,
        default=None,
        help="Seed mixed into cache-buster query strings (default: random per run)",
    )


def pytest_configure(config):
    seed = config.getoption("run_seed")
    if seed is not None:
        cache_buster.set_run_seed(seed)


def pytest_report_header(config):
    return f"squidcache run seed: {cache_buster.run_seed()}"

