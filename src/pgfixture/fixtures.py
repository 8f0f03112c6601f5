"""
Connection helpers behind the pytest fixtures.

One connection lives for a whole worker; every test runs inside a
transaction on it that is always rolled back.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterator

import psycopg2

from .models import ConnectionConfig

logger = logging.getLogger(__name__)


def worker_connection(
    connection_config: ConnectionConfig,
    connect: Callable[..., Any] = psycopg2.connect,
) -> Generator[Any, None, None]:
    """
    Yield a connection that lives until the generator is closed.

    Args:
        connection_config: Published connection settings
        connect: Driver connect function

    Yields:
        Open database connection
    """
    conn = connect(**connection_config.connect_kwargs())
    logger.debug(f"Opened worker connection to {connection_config.masked_dsn()}")
    try:
        yield conn
    finally:
        conn.close()
        logger.debug("Closed worker connection")


@contextmanager
def transaction(conn: Any) -> Iterator[Any]:
    """
    Run a block inside a transaction that is always rolled back.

    Args:
        conn: Worker connection (autocommit off)

    Yields:
        The same connection, inside a fresh transaction
    """
    # Leave any state from a previous test behind
    conn.rollback()
    try:
        yield conn
    finally:
        conn.rollback()
