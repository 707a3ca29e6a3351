"""Pytest configuration and shared fixtures."""

import pytest

# The bsnbridge testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test
# suite we disable it (``-p no:bsnbridge``) and load explicitly here
# instead, because conftest-based loading is processed during
# ``pytest_load_initial_conftests``, after ``pytest-cov`` starts
# coverage tracing, so the bsnbridge import chain is measured.
pytest_plugins = ["bsnbridge.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (several components together)"
    )
