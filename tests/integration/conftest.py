"""
Integration test configuration for pgfixture.

Runs real containers through Docker or Podman; every test here is skipped
when neither runtime is available.
"""

import socket
import subprocess

import pytest

from pgfixture.config import PgFixtureSettings


def detect_container_runtime():
    """
    Detect available container runtime (Docker or Podman).

    Returns:
        str: 'docker' or 'podman' or None if neither is available
    """
    for runtime in ("docker", "podman"):
        try:
            result = subprocess.run(
                [runtime, "info"], capture_output=True, text=True, timeout=10
            )
            if result.returncode == 0:
                return runtime
        except (subprocess.TimeoutExpired, FileNotFoundError):
            pass

    return None


def free_port() -> int:
    """Ask the OS for a port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(scope="session")
def container_runtime_name():
    runtime = detect_container_runtime()
    if runtime is None:
        pytest.skip("No container runtime (Docker or Podman) available for integration tests")
    return runtime


@pytest.fixture
def integration_settings(container_runtime_name, isolated_test_env):
    return PgFixtureSettings(
        container_runtime=container_runtime_name,
        ready_timeout=120,
    )


@pytest.fixture
def host_port():
    return free_port()


def running_names(runtime: str):
    """Names of all running containers."""
    result = subprocess.run(
        [runtime, "ps", "--format", "{{.Names}}"], capture_output=True, text=True
    )
    return set(result.stdout.split())
