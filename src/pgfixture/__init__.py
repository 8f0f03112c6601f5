"""
pgfixture: disposable PostgreSQL databases for test runs

Starts a throwaway PostgreSQL container, migrates and seeds it, hands the
connection settings to pytest fixtures and always removes the container.
"""

__version__ = "0.1.0"

from .config import PgFixtureSettings, PluginConfig, PostgresConfig
from .context import RunContext
from .logging_config import setup_logging
from .models import ConnectionConfig, ContainerSpec
from .orchestrator import TestDatabaseOrchestrator
from .resolver import resolve_config

__all__ = [
    "ConnectionConfig",
    "ContainerSpec",
    "PgFixtureSettings",
    "PluginConfig",
    "PostgresConfig",
    "RunContext",
    "TestDatabaseOrchestrator",
    "resolve_config",
    "setup_logging",
]
