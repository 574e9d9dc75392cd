"""
Test Configuration and Fixtures

Shared fixtures for the carrier test suite.
"""

import os

import pytest

# Set test environment variables before importing the package.
#
# Use setdefault so CI can override these.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "text")


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (real event loop scheduling)")


def pytest_collection_modifyitems(config, items):
    """
    Auto-assign tier markers so we can run:
    - pytest -m unit
    - pytest -m integration

    Convention:
    - tests/integration/** => integration
    - everything else      => unit
    """
    for item in items:
        path = str(getattr(item, "fspath", ""))
        if item.get_closest_marker("integration") or item.get_closest_marker("unit"):
            continue
        if "/tests/integration/" in path or path.endswith("\\tests\\integration\\"):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# CARRIER FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_carrier():
    """Give every test an unconstructed carrier slot and uncached settings."""
    from execution_context.carrier import reset_carrier_for_tests
    from execution_context.config import get_settings

    reset_carrier_for_tests()
    get_settings.cache_clear()
    yield
    reset_carrier_for_tests()
    get_settings.cache_clear()


@pytest.fixture
def disable_async_context(monkeypatch):
    """Simulate a runtime without context-local storage."""
    monkeypatch.setenv("ASYNC_CONTEXT_ENABLED", "false")
