"""
Root pytest configuration shared by the shieldcore and shieldwallet suites.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from pytest import StashKey

_fail_on_skip_key: StashKey[bool] = StashKey[bool]()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--fail-on-skip",
        action="store_true",
        default=False,
        help="Report skipped tests as failures (CI runs must exercise every test)",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.stash[_fail_on_skip_key] = config.getoption("--fail-on-skip", default=False)


def _skip_reason(report: pytest.TestReport) -> str:
    longrepr = report.longrepr
    if isinstance(longrepr, tuple) and len(longrepr) >= 3:
        return str(longrepr[2])
    return str(longrepr) if longrepr else "no reason given"


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[None]
) -> Generator[None, None, None]:
    """With --fail-on-skip, a test skipped at runtime is reported as failed."""
    outcome = yield
    report: pytest.TestReport = outcome.get_result()

    if report.skipped and item.config.stash.get(_fail_on_skip_key, False):
        report.outcome = "failed"
        report.longrepr = f"Skipped with --fail-on-skip: {_skip_reason(report)}"
