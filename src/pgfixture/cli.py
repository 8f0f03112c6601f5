"""
Command-line interface for pgfixture

Starts a disposable database outside of pytest, previews the container
command, applies migrations and removes leftover containers.
"""

import sys
import time
from pathlib import Path
from typing import Optional, Tuple

import click
import psycopg2

from .config import (
    DockerContainerConfig,
    PgFixtureSettings,
    PluginConfig,
    PostgresConfig,
    load_plugin_config,
)
from .container_args import build_container_args, format_container_args
from .container_runtime import ContainerRuntime
from .context import RunContext
from .exceptions import PgFixtureError
from .logging_config import mask_sensitive_data, setup_logging
from .orchestrator import TestDatabaseOrchestrator
from .resolver import resolve_config
from .schema_migration import MigrationError, MigrationRunner


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for log files",
)
@click.version_option(package_name="pgfixture")
@click.pass_context
def cli(
    ctx: click.Context,
    log_level: Optional[str],
    verbose: bool,
    log_dir: Optional[Path],
) -> None:
    """
    pgfixture: disposable PostgreSQL databases for test runs
    """
    overrides = {
        k: v for k, v in {
            "log_level": log_level.upper() if log_level else None,
            "verbose": verbose or None,
            "log_dir": str(log_dir) if log_dir else None,
        }.items() if v is not None
    }
    settings = PgFixtureSettings(**overrides)

    setup_logging(
        log_dir=settings.log_dir,
        verbose=settings.verbose,
        log_level=settings.log_level,
    )

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


def _load_plugin_config(
    config_file: Optional[Path],
    image: Optional[str],
    tag: Optional[str],
    port: Optional[int],
    migrations: Optional[Path],
    seed: Optional[str],
) -> PluginConfig:
    """Plugin config from a YAML file (or defaults) with command-line overrides."""
    if config_file:
        plugin_config = load_plugin_config(config_file)
    else:
        plugin_config = PluginConfig(postgres=PostgresConfig(docker_container=True))

    postgres_updates = {}
    if image or tag:
        current = plugin_config.postgres.docker_container
        base = current if isinstance(current, DockerContainerConfig) else DockerContainerConfig()
        postgres_updates["docker_container"] = DockerContainerConfig(
            image=image or base.image,
            tag=tag or base.tag,
        )
    if port:
        postgres_updates["port"] = port

    updates = {}
    if postgres_updates:
        updates["postgres"] = plugin_config.postgres.model_copy(update=postgres_updates)
    if migrations:
        updates["migrations_path"] = str(migrations)
    if seed:
        updates["seed"] = seed

    if not updates:
        return plugin_config
    return PluginConfig(**{**dict(plugin_config), **updates})


config_option = click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML file describing the database",
)
image_option = click.option("--image", default=None, help="Container image")
tag_option = click.option("--tag", default=None, help="Container image tag")
port_option = click.option("--port", type=int, default=None, help="Host port")


@cli.command()
@config_option
@image_option
@tag_option
@port_option
@click.option(
    "--migrations",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory of migrations to apply",
)
@click.option("--seed", default=None, help="Seed routine as module:function")
@click.pass_context
def up(
    ctx: click.Context,
    config_file: Optional[Path],
    image: Optional[str],
    tag: Optional[str],
    port: Optional[int],
    migrations: Optional[Path],
    seed: Optional[str],
) -> None:
    """Start a database, migrate and seed it, remove it on Ctrl+C."""
    settings = ctx.obj["settings"]

    try:
        plugin_config = _load_plugin_config(config_file, image, tag, port, migrations, seed)
    except ValueError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)

    orchestrator = TestDatabaseOrchestrator.from_plugin_config(
        plugin_config, RunContext(), settings=settings
    )

    click.echo("🚀 Starting test database...")
    try:
        connection = orchestrator.setup()
    except PgFixtureError as e:
        click.echo(f"❌ {e.get_detailed_message()}", err=True)
        sys.exit(1)

    try:
        click.echo(f"✅ Database ready: {connection.masked_dsn()}")
        if orchestrator.container_id:
            click.echo(f"   Container: {orchestrator.container_id}")
        click.echo("Press Ctrl+C to stop and remove the database")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\n🛑 Stopping test database...")
    finally:
        orchestrator.close()

    click.echo("✅ Test database removed")


@cli.command()
@config_option
@image_option
@tag_option
@port_option
@click.option("--name", "instance_name", default="<name>", help="Container name to show")
@click.pass_context
def args(
    ctx: click.Context,
    config_file: Optional[Path],
    image: Optional[str],
    tag: Optional[str],
    port: Optional[int],
    instance_name: str,
) -> None:
    """Show the container command `up` would run."""
    settings = ctx.obj["settings"]

    try:
        plugin_config = _load_plugin_config(config_file, image, tag, port, None, None)
        resolved = resolve_config(plugin_config.postgres)
    except (ValueError, PgFixtureError) as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)

    if resolved.container is None:
        click.echo("No container requested; the database is managed externally.")
        click.echo(f"Connection: {resolved.connection.masked_dsn()}")
        return

    command = format_container_args(build_container_args(resolved.container, instance_name))
    click.echo(mask_sensitive_data(f"{settings.container_runtime} run {command}"))


@cli.command()
@click.option("--database-url", required=True, help="PostgreSQL connection URL")
@click.option(
    "--migrations",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Directory of migrations to apply",
)
@click.option("--target", default=None, help="Stop after this version")
def migrate(database_url: str, migrations: Path, target: Optional[str]) -> None:
    """Apply pending migrations to an existing database."""
    try:
        conn = psycopg2.connect(database_url)
    except psycopg2.Error as e:
        click.echo(f"❌ Could not connect: {mask_sensitive_data(str(e))}", err=True)
        sys.exit(1)

    try:
        result = MigrationRunner(conn, migrations).migrate(target_version=target)
    except (MigrationError, psycopg2.Error) as e:
        click.echo(f"❌ Migration failed: {e}", err=True)
        sys.exit(1)
    finally:
        conn.close()

    if result.success:
        click.echo(f"✅ {result.message}")
    else:
        click.echo(f"❌ {result.message}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("identities", nargs=-1, required=True)
@click.pass_context
def rm(ctx: click.Context, identities: Tuple[str, ...]) -> None:
    """Force-remove containers by identity."""
    runtime = ContainerRuntime(ctx.obj["settings"])
    for identity in identities:
        runtime.stop(identity)
        click.echo(f"🗑️  Removed {identity}")


@cli.command("config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Display current settings."""
    settings = ctx.obj["settings"]

    click.echo("Current pgfixture Configuration:")
    click.echo("=" * 40)
    click.echo(f"Container Runtime   : {settings.container_runtime}")
    click.echo(f"Poll Interval       : {settings.poll_interval}s")
    click.echo(f"Ready Timeout       : {settings.ready_timeout or 'unbounded'}")
    click.echo(f"Log Level           : {settings.log_level}")
    click.echo(f"Log Dir             : {settings.log_dir or '-'}")
    click.echo(f"Verbose             : {settings.verbose}")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
