"""
Test database orchestration

Runs the setup protocol for one test run: resolve configuration, start the
container, migrate, seed, publish the connection settings. The container is
owned by a single cleanup scope, closed either when setup fails or when the
run ends.
"""

import inspect
import logging
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import psycopg2

from .config import POSTGRES_CONFIG_KEY, PgFixtureSettings, PluginConfig, PostgresConfig
from .container_runtime import ContainerRuntime
from .context import RunContext
from .exceptions import (
    DatabaseConnectionFailure,
    MigrationFailure,
    PgFixtureError,
    SeedFailure,
)
from .models import ConnectionConfig, OrchestrationState, ResolvedConfig
from .resolver import resolve_config, run_awaitable
from .schema_migration import MigrationRunner

logger = logging.getLogger(__name__)

SeedFunction = Callable[[Any], Any]


class TestDatabaseOrchestrator:
    """
    Provisions the database for one test run and tears it down again.

    ``setup()`` walks idle -> container_starting -> migrating -> seeding ->
    ready. A failure in any stage moves to failed, removes the container and
    re-raises. ``close()`` is the end-of-run hook and is safe to call at any
    point, any number of times.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        user_config: PostgresConfig,
        context: RunContext,
        migrations_path: Optional[Union[str, Path]] = None,
        seed: Optional[SeedFunction] = None,
        runtime: Optional[ContainerRuntime] = None,
        connect: Callable[..., Any] = psycopg2.connect,
        name: str = "postgres",
        config_key: str = POSTGRES_CONFIG_KEY,
        settings: Optional[PgFixtureSettings] = None,
    ):
        self.user_config = user_config
        self.context = context
        self.migrations_path = migrations_path
        self.seed = seed
        self.settings = settings or PgFixtureSettings()
        self.runtime = runtime or ContainerRuntime(self.settings)
        self.connect = connect
        self.name = name
        self.config_key = config_key

        self._state = OrchestrationState.IDLE
        self._container_id: Optional[str] = None
        self._resolved: Optional[ResolvedConfig] = None
        self._cleanup = ExitStack()

    @classmethod
    def from_plugin_config(
        cls, plugin_config: PluginConfig, context: RunContext, **kwargs
    ) -> "TestDatabaseOrchestrator":
        return cls(
            plugin_config.postgres,
            context,
            migrations_path=plugin_config.migrations_path,
            seed=plugin_config.seed,
            name=plugin_config.name,
            config_key=plugin_config.config_key,
            **kwargs,
        )

    @property
    def state(self) -> OrchestrationState:
        return self._state

    @property
    def container_id(self) -> Optional[str]:
        return self._container_id

    @property
    def resolved(self) -> Optional[ResolvedConfig]:
        return self._resolved

    def _transition(self, state: OrchestrationState) -> None:
        logger.debug(f"[{self.name}] {self._state.value} -> {state.value}")
        self._state = state

    def setup(self) -> ConnectionConfig:
        """
        Run the full setup protocol.

        Returns:
            The connection settings published to the run context

        Raises:
            PgFixtureError: The failing stage's error, after the container
                has been removed
        """
        if self._state is not OrchestrationState.IDLE:
            raise RuntimeError(f"[{self.name}] setup() called in state {self._state.value}")

        try:
            self._transition(OrchestrationState.CONTAINER_STARTING)
            self._resolved = resolve_config(self.user_config)
            self._start_container()

            connection_config = self._resolved.connection
            with self._open_connection(connection_config) as conn:
                self._transition(OrchestrationState.MIGRATING)
                self._run_migrations(conn)

                self._transition(OrchestrationState.SEEDING)
                self._run_seed(conn)

            self.context.provide(self.config_key, connection_config)
            self._transition(OrchestrationState.READY)
            logger.info(f"[{self.name}] Database ready at {connection_config.masked_dsn()}")
            return connection_config

        except BaseException as e:
            failed_stage = self._state.value
            self._transition(OrchestrationState.FAILED)
            self._cleanup.close()
            if isinstance(e, PgFixtureError):
                e.component = e.component or self.name
                e.stage = e.stage or failed_stage
                logger.error(f"[{self.name}] Error during {e.stage}: {e.get_detailed_message()}")
            else:
                logger.error(f"[{self.name}] Setup aborted during {failed_stage}: {e!r}")
            raise

    def _start_container(self) -> None:
        container = self._resolved.container
        if container is None:
            logger.info(f"[{self.name}] Using external database {self._resolved.connection.masked_dsn()}")
            return

        self._container_id = self.runtime.start(container)
        self._cleanup.callback(self.runtime.stop, self._container_id)

    @contextmanager
    def _open_connection(self, connection_config: ConnectionConfig) -> Iterator[Any]:
        """Setup-only connection, closed when the setup sequence ends."""
        try:
            conn = self.connect(**connection_config.connect_kwargs())
        except PgFixtureError:
            raise
        except Exception as e:
            raise DatabaseConnectionFailure(
                f"Could not connect to {connection_config.masked_dsn()}: {e}",
                component=self.name,
            ) from e

        try:
            yield conn
        finally:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"[{self.name}] Failed to close setup connection: {e}")

    def _run_migrations(self, conn: Any) -> None:
        if not self.migrations_path:
            return

        try:
            runner = MigrationRunner(conn, self.migrations_path)
            result = runner.migrate()
        except Exception as e:
            raise MigrationFailure(
                f"Could not run migrations from {self.migrations_path}: {e}",
                component=self.name,
            ) from e

        if not result.success:
            raise MigrationFailure(
                result.message,
                version=result.version,
                component=self.name,
            ) from result.error

        logger.info(f"[{self.name}] {result.message}")

    def _run_seed(self, conn: Any) -> None:
        if self.seed is None:
            return

        try:
            outcome = self.seed(conn)
            if inspect.isawaitable(outcome):
                run_awaitable(outcome)
            conn.commit()
        except Exception as e:
            try:
                conn.rollback()
            except Exception:
                logger.debug(f"[{self.name}] Rollback after seed failure also failed")
            raise SeedFailure(f"Seed routine failed: {e}", component=self.name) from e

        logger.info(f"[{self.name}] Seed completed")

    def close(self) -> None:
        """Tear down the container, if one was started. Idempotent."""
        if self._state is OrchestrationState.CLOSED:
            return

        self._transition(OrchestrationState.TEARING_DOWN)
        self._cleanup.close()
        self._transition(OrchestrationState.CLOSED)

    def __enter__(self) -> ConnectionConfig:
        return self.setup()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
