"""
Configuration management for pgfixture

Runtime settings are loaded from environment variables and ``.env`` files
using Pydantic settings. The database a test run should get is described by
``PostgresConfig``, either built in a conftest hook or loaded from YAML.
"""

import importlib
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import PasswordValue

logger = logging.getLogger(__name__)

POSTGRES_CONFIG_KEY = "postgres_config"


class PgFixtureSettings(BaseSettings):
    """
    Runtime settings for pgfixture.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="PGFIXTURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Container configuration
    container_runtime: str = Field(
        default="docker",
        description="Container runtime (docker or podman)",
    )
    poll_interval: float = Field(
        default=0.5,
        gt=0,
        description="Seconds between readiness checks",
    )
    ready_timeout: Optional[float] = Field(
        default=None,
        description="Give up waiting for readiness after this many seconds (unbounded if unset)",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for container command logs (disabled if unset)",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("container_runtime")
    @classmethod
    def validate_container_runtime(cls, v: str) -> str:
        """Validate container runtime is supported."""
        valid_runtimes = ["docker", "podman"]
        if v.lower() not in valid_runtimes:
            raise ValueError(
                f"container_runtime must be one of: {', '.join(valid_runtimes)}"
            )
        return v.lower()

    def get_log_dir_path(self) -> Optional[Path]:
        """Get log directory as Path object."""
        return Path(self.log_dir) if self.log_dir else None


class DockerContainerConfig(BaseModel):
    """Image selection for a container-backed database."""
    image: Optional[str] = Field(None, description="Image name, defaults to postgres")
    tag: Optional[str] = Field(None, description="Image tag, e.g. 18 or 17-alpine")


class PostgresConfig(BaseModel):
    """
    What the test run wants to connect to.

    With ``docker_container`` unset the fields describe an externally
    managed database and are used as given. Unknown keys are kept and passed
    to the driver.
    """

    model_config = ConfigDict(extra="allow")

    docker_container: Union[bool, DockerContainerConfig] = Field(
        False, description="Start a disposable container (True or image/tag settings)"
    )
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: PasswordValue = Field(
        None, description="Password or a (possibly async) callable returning it"
    )

    @property
    def extras(self) -> Dict[str, Any]:
        """Driver-specific keys that are not part of the core fields."""
        return dict(self.model_extra or {})

    @property
    def wants_container(self) -> bool:
        return bool(self.docker_container)


class PluginConfig(BaseModel):
    """Full description of the database a test run needs."""

    name: str = Field("postgres", description="Name used in log messages")
    config_key: str = Field(POSTGRES_CONFIG_KEY, description="Run context key")
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    migrations_path: Optional[str] = Field(None, description="Directory of migrations")
    seed: Optional[Callable[..., Any]] = Field(
        None, description="Seed callable or 'module:function' reference"
    )

    @field_validator("seed", mode="before")
    @classmethod
    def import_seed(cls, v):
        """Allow seed routines to be referenced by import path."""
        if isinstance(v, str):
            return import_string(v)
        return v


def import_string(reference: str) -> Any:
    """
    Import an attribute from a ``package.module:attribute`` reference.

    Args:
        reference: Import path with the attribute after a colon

    Returns:
        The referenced object
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {reference!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import {module_name!r}: {e}") from e

    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ValueError(f"Module {module_name!r} has no attribute {attribute!r}") from None


def load_plugin_config(config_file: Union[str, Path]) -> PluginConfig:
    """
    Load a plugin configuration from a YAML file.

    A relative ``migrations_path`` is resolved against the directory holding
    the file.

    Args:
        config_file: Path to the YAML file

    Returns:
        Validated plugin configuration
    """
    import yaml

    config_path = Path(config_file)
    if not config_path.exists():
        raise ValueError(f"pgfixture config file not found: {config_path}")

    with open(config_path, "r") as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ValueError(f"Invalid pgfixture config in {config_path}: expected a mapping")

    migrations_path = config_data.get("migrations_path")
    if migrations_path and not Path(migrations_path).is_absolute():
        config_data["migrations_path"] = str(config_path.parent / migrations_path)

    logger.debug(f"Loaded pgfixture config from {config_path}")
    return PluginConfig(**config_data)
