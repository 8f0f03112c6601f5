"""
Configuration resolver

Turns a ``PostgresConfig`` into the connection descriptor the tests use and,
when a disposable container is requested, the container spec that serves it.
"""

import asyncio
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from .config import DockerContainerConfig, PostgresConfig
from .exceptions import ConfigResolutionFailure
from .models import (
    LOCALHOST,
    ConnectionConfig,
    ContainerSpec,
    HealthCheck,
    PasswordValue,
    PortMapping,
    ResolvedConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_IMAGE = "postgres"
DEFAULT_DOCKER_TAG = "latest"

DEFAULT_POSTGRES_DB = "testdb"
DEFAULT_POSTGRES_USER = "testuser"
DEFAULT_POSTGRES_PASSWORD = "test"
DEFAULT_POSTGRES_PORT = 5432


async def _await(awaitable: Any) -> Any:
    return await awaitable


def run_awaitable(awaitable: Any) -> Any:
    """
    Run an awaitable to completion from synchronous code.

    A running event loop cannot be re-entered, so inside one the awaitable
    gets its own loop on a worker thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(awaitable))

    with ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, _await(awaitable)).result()


def resolve_password(password: PasswordValue) -> Optional[str]:
    """
    Turn a password value into a string.

    Callables are invoked; an awaitable result is run to completion.

    Raises:
        ConfigResolutionFailure: If the password provider raises
    """
    if not callable(password):
        return password

    try:
        value = password()
        if inspect.isawaitable(value):
            value = run_awaitable(value)
    except Exception as e:
        logger.error(f"Password provider failed: {e}")
        raise ConfigResolutionFailure(f"Password provider failed: {e}") from e

    return value


def _image_and_tag(docker_container) -> tuple:
    if isinstance(docker_container, DockerContainerConfig):
        return (
            docker_container.image or DEFAULT_DOCKER_IMAGE,
            docker_container.tag or DEFAULT_DOCKER_TAG,
        )
    return DEFAULT_DOCKER_IMAGE, DEFAULT_DOCKER_TAG


def resolve_config(user_config: PostgresConfig) -> ResolvedConfig:
    """
    Resolve user configuration into a connection descriptor and container spec.

    Without a container request the connection fields are used exactly as
    given. With one, unset fields get defaults, the host is pinned to
    localhost and the container is derived from the same values so the
    descriptor can reach it.

    Args:
        user_config: Configuration supplied by the test suite

    Returns:
        Resolved connection descriptor and optional container spec

    Raises:
        ConfigResolutionFailure: If an async or sync password provider fails
    """
    if not user_config.wants_container:
        logger.debug("No container requested, using externally managed database")
        return ResolvedConfig(
            connection=ConnectionConfig(
                host=user_config.host,
                port=user_config.port,
                database=user_config.database,
                user=user_config.user,
                password=user_config.password,
                options=user_config.extras,
            ),
            container=None,
        )

    image, tag = _image_and_tag(user_config.docker_container)

    port = DEFAULT_POSTGRES_PORT if user_config.port is None else user_config.port
    database = DEFAULT_POSTGRES_DB if user_config.database is None else user_config.database
    user = DEFAULT_POSTGRES_USER if user_config.user is None else user_config.user
    # Empty credentials fall back to the default as well
    password = resolve_password(user_config.password) or DEFAULT_POSTGRES_PASSWORD

    connection = ConnectionConfig(
        host=LOCALHOST,
        port=port,
        database=database,
        user=user,
        password=password,
        options=user_config.extras,
    )

    container = ContainerSpec(
        image=image,
        tag=tag,
        healthcheck=HealthCheck(
            test=["pg_isready", "-U", user],
            interval="5s",
            timeout="5s",
            retries=5,
        ),
        ports=[PortMapping(host_port=port, container_port=DEFAULT_POSTGRES_PORT)],
        environment={
            "POSTGRES_DB": database,
            "POSTGRES_USER": user,
            "POSTGRES_PASSWORD": password,
        },
    )

    logger.debug(f"Resolved container {container.image_ref} for {connection.masked_dsn()}")
    return ResolvedConfig(connection=connection, container=container)
