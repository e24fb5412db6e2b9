"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

# The wallbridge testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test
# suite we disable it (``-p no:wallbridge``) and load explicitly here
# instead, because conftest-based loading is processed during
# ``pytest_load_initial_conftests``, after ``pytest-cov`` starts
# coverage tracing, so the wallbridge import chain is measured.
pytest_plugins = ["wallbridge.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (full bridge lifecycle)"
    )


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    """Save and restore root logger handlers and level.

    Anything that runs the bridge calls ``configure_logging()``, which
    replaces the root handlers; this keeps that from leaking into
    later tests.
    """
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    for h in root.handlers:
        if h not in original_handlers:
            h.close()
    root.handlers = original_handlers
    root.setLevel(original_level)
