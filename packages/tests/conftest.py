"""Pytest configuration and shared fixtures."""

import asyncio
from collections.abc import Awaitable, Callable

import pytest

# The shadowsync testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test suite
# we disable it (``-p no:shadowsync``) and load it explicitly here, so
# the shadowsync import chain is measured by pytest-cov.
pytest_plugins = ["shadowsync.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (may require external services)"
    )


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    """Coroutine function that yields to the loop until queued work has run."""

    async def _settle(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle
