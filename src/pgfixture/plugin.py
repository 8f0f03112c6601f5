"""
pytest plugin for disposable PostgreSQL databases

Provisions the database once per run (on the controller when running under
pytest-xdist), removes it when pytest shuts down, and exposes the
``pg_connection_config``, ``pg_worker_connection`` and ``pg_db`` fixtures.
"""

import logging
from typing import Optional

import pytest

from .config import PgFixtureSettings, PluginConfig, load_plugin_config
from .context import RunContext
from .exceptions import PgFixtureError
from .fixtures import transaction, worker_connection
from .models import ConnectionConfig
from .orchestrator import TestDatabaseOrchestrator

logger = logging.getLogger(__name__)

WORKERINPUT_KEY = "pgfixture_connection"

context_key = pytest.StashKey[RunContext]()
plugin_config_key = pytest.StashKey[PluginConfig]()
orchestrator_key = pytest.StashKey[TestDatabaseOrchestrator]()


def pytest_addhooks(pluginmanager):
    from . import hooks

    pluginmanager.add_hookspecs(hooks)


def pytest_addoption(parser):
    group = parser.getgroup("pgfixture", "disposable PostgreSQL databases")
    group.addoption(
        "--pgfixture-config",
        action="store",
        default=None,
        help="YAML file describing the test database",
    )
    parser.addini(
        "pgfixture_config",
        "YAML file describing the test database",
        default=None,
    )


def load_config(config: pytest.Config) -> Optional[PluginConfig]:
    """Find the plugin configuration: conftest hook, command line, then ini."""
    result = config.hook.pytest_pgfixture_config(config=config)
    if result is not None:
        return result if isinstance(result, PluginConfig) else PluginConfig(**result)

    config_file = config.getoption("pgfixture_config") or config.getini("pgfixture_config")
    if config_file:
        return load_plugin_config(config.rootpath / config_file)

    return None


def is_xdist_worker(config: pytest.Config) -> bool:
    return hasattr(config, "workerinput")


@pytest.hookimpl(tryfirst=True)
def pytest_sessionstart(session: pytest.Session) -> None:
    config = session.config
    plugin_config = load_config(config)
    if plugin_config is None:
        logger.debug("pgfixture: no test database configured, plugin inactive")
        return

    context = RunContext()
    config.stash[context_key] = context
    config.stash[plugin_config_key] = plugin_config

    if is_xdist_worker(config):
        payload = config.workerinput.get(WORKERINPUT_KEY)
        if payload is not None:
            context.provide(plugin_config.config_key, ConnectionConfig.from_payload(payload))
        return

    orchestrator = TestDatabaseOrchestrator.from_plugin_config(
        plugin_config, context, settings=PgFixtureSettings()
    )
    config.stash[orchestrator_key] = orchestrator
    # Runs on pytest shutdown, whether or not setup completed
    config.add_cleanup(orchestrator.close)

    try:
        orchestrator.setup()
    except PgFixtureError as e:
        pytest.exit(
            f"pgfixture: database setup failed: {e.get_detailed_message()}",
            returncode=pytest.ExitCode.INTERNAL_ERROR,
        )


@pytest.hookimpl(optionalhook=True)
def pytest_configure_node(node) -> None:
    """Hand the published connection settings to an xdist worker."""
    connection_config = published_connection(node.config)
    if connection_config is not None:
        node.workerinput[WORKERINPUT_KEY] = connection_config.to_payload()


def published_connection(config: pytest.Config) -> Optional[ConnectionConfig]:
    context = config.stash.get(context_key, None)
    plugin_config = config.stash.get(plugin_config_key, None)
    if context is None or plugin_config is None:
        return None
    if plugin_config.config_key not in context:
        return None
    return context.inject(plugin_config.config_key)


@pytest.fixture(scope="session")
def pg_connection_config(pytestconfig: pytest.Config) -> ConnectionConfig:
    """Connection settings of the test database."""
    connection_config = published_connection(pytestconfig)
    if connection_config is None:
        pytest.skip("pgfixture: no test database configured")
    return connection_config


@pytest.fixture(scope="session")
def pg_worker_connection(pg_connection_config: ConnectionConfig):
    """One connection per worker, closed when the worker finishes."""
    yield from worker_connection(pg_connection_config)


@pytest.fixture
def pg_db(pg_worker_connection):
    """Connection inside a transaction that is rolled back after the test."""
    with transaction(pg_worker_connection) as conn:
        yield conn

