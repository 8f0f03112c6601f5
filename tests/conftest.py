"""
Pytest configuration and fixtures for pgfixture tests.

Provides common fixtures and test utilities across all test modules.
"""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from pgfixture.config import PgFixtureSettings, PostgresConfig
from pgfixture.context import RunContext

from .mock_containers import MockContainerRuntime
from .mock_database import MockConnection

pytest_plugins = ["pytester"]


@pytest.fixture
def isolated_test_env() -> Generator[dict[str, str], None, None]:
    """
    Create isolated test environment with clean environment variables.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("PGFIXTURE_"):
            del os.environ[key]

    yield original_env

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_settings(isolated_test_env: dict[str, str]) -> PgFixtureSettings:
    """
    Create test settings with safe defaults.

    Returns:
        Settings with a short poll interval and no file logging
    """
    return PgFixtureSettings(
        container_runtime="docker",
        poll_interval=0.01,
        log_level="DEBUG",
    )


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """
    Create temporary workspace directory for test files.

    Yields:
        Path to temporary workspace
    """
    temp_dir = tempfile.mkdtemp(prefix="pgfixture_workspace_")
    workspace = Path(temp_dir)

    yield workspace

    shutil.rmtree(temp_dir)


@pytest.fixture
def migrations_dir(temp_workspace: Path) -> Path:
    """Directory with two SQL migrations, one with a rollback."""
    path = temp_workspace / "migrations"
    path.mkdir()
    (path / "001_create_users.sql").write_text(
        "-- Description: Create users table\n"
        "CREATE TABLE users (id SERIAL PRIMARY KEY, name TEXT);\n"
    )
    (path / "001_create_users.rollback.sql").write_text("DROP TABLE users;\n")
    (path / "002_add_email.sql").write_text(
        "ALTER TABLE users ADD COLUMN email TEXT;\n"
    )
    return path


@pytest.fixture
def mock_runtime(test_settings: PgFixtureSettings) -> MockContainerRuntime:
    """Container runtime that never touches docker."""
    return MockContainerRuntime(test_settings)


@pytest.fixture
def mock_connection() -> MockConnection:
    return MockConnection()


@pytest.fixture
def run_context() -> RunContext:
    return RunContext()


@pytest.fixture
def container_config() -> PostgresConfig:
    """Request for a container with all defaults."""
    return PostgresConfig(docker_container=True)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "container: marks tests that require a container runtime")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)

        if "docker" in item.nodeid:
            item.add_marker(pytest.mark.container)
