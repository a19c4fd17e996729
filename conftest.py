"""
Pytest configuration and shared fixtures.

This file contains pytest configuration and fixtures that are available
to all test modules in the project.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

# Import all fixtures from the fixtures module
from tests.fixtures import *


def pytest_configure(config):
    """Configure pytest settings."""
    # Register custom markers
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components in isolation"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test component interactions"
    )
    config.addinivalue_line(
        "markers", "config: Configuration-related tests"
    )
    config.addinivalue_line(
        "markers", "delegation: Delegation lifecycle tests"
    )
    config.addinivalue_line(
        "markers", "conflicts: Conflict detection and resolution tests"
    )
    config.addinivalue_line(
        "markers", "health: Health check tests"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location and content."""
    for item in items:
        # Mark tests based on file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        # Mark tests based on function name patterns
        if "config" in item.name:
            item.add_marker(pytest.mark.config)

        if "delegat" in item.name:
            item.add_marker(pytest.mark.delegation)

        if "conflict" in item.name:
            item.add_marker(pytest.mark.conflicts)

        if "health" in item.name:
            item.add_marker(pytest.mark.health)


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up the test environment before any tests run."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["TESTING"] = "true"

    yield

    os.environ.pop("ENVIRONMENT", None)
    os.environ.pop("TESTING", None)


@pytest.fixture
def temp_directory():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_environment_variables():
    """Provide a context manager for mocking environment variables."""
    def _mock_env(**kwargs):
        return patch.dict(os.environ, kwargs)

    return _mock_env

