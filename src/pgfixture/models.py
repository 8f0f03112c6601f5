"""
Data models for pgfixture

Defines the container spec handed to the container runtime, the connection
descriptor handed to test fixtures, and the state enums used while a
disposable database is being provisioned.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

LOCALHOST = "localhost"

PasswordValue = Union[str, Callable[[], Any], None]


class ContainerState(Enum):
    """Lifecycle state of a container started by the runtime."""

    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


class HealthStatus(Enum):
    """Container status values the readiness poll waits for."""

    RUNNING = "running"
    HEALTHY = "healthy"


class OrchestrationState(Enum):
    """States of one setup/teardown run."""

    IDLE = "idle"
    CONTAINER_STARTING = "container_starting"
    MIGRATING = "migrating"
    SEEDING = "seeding"
    READY = "ready"
    TEARING_DOWN = "tearing_down"
    CLOSED = "closed"
    FAILED = "failed"


class PortMapping(BaseModel):
    """Host port published for a container port."""

    model_config = ConfigDict(frozen=True)

    host_port: int = Field(..., gt=0, description="Port published on the host")
    container_port: int = Field(..., gt=0, description="Port inside the container")


class HealthCheck(BaseModel):
    """Health check run by the container runtime inside the container."""

    model_config = ConfigDict(frozen=True)

    test: List[str] = Field(..., description="Health command as an argument list")
    interval: Optional[str] = Field(None, description="Time between checks, e.g. 5s")
    timeout: Optional[str] = Field(None, description="Time allowed per check")
    retries: Optional[int] = Field(None, description="Failures before unhealthy")
    start_period: Optional[str] = Field(None, description="Grace period after start")


class ContainerSpec(BaseModel):
    """Everything needed to run one disposable database container."""

    model_config = ConfigDict(frozen=True)

    image: str
    tag: str
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[PortMapping] = Field(default_factory=list)
    healthcheck: Optional[HealthCheck] = None

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    @property
    def ready_status(self) -> HealthStatus:
        """Status the container must report before it is usable."""
        return HealthStatus.HEALTHY if self.healthcheck else HealthStatus.RUNNING


class ConnectionConfig(BaseModel):
    """
    Database connection descriptor published to test fixtures.

    Core connection fields are typed; driver specific keys live in
    ``options`` and are passed to the driver untouched.
    """

    model_config = ConfigDict(frozen=True)

    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: PasswordValue = None
    options: Dict[str, Any] = Field(default_factory=dict)

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``psycopg2.connect``."""
        from .resolver import resolve_password

        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": resolve_password(self.password),
        }
        kwargs = {key: value for key, value in kwargs.items() if value is not None}
        kwargs.update(self.options)
        return kwargs

    def masked_dsn(self) -> str:
        """Connection URL with the password hidden, for logs and output."""
        user = self.user or ""
        credentials = f"{user}:***@" if self.password else (f"{user}@" if user else "")
        host = self.host or ""
        port = f":{self.port}" if self.port else ""
        database = self.database or ""
        return f"postgresql://{credentials}{host}{port}/{database}"

    def to_payload(self) -> Dict[str, Any]:
        """Plain dict form, safe to ship to another process."""
        from .resolver import resolve_password

        payload = self.model_dump(exclude={"password"})
        payload["password"] = resolve_password(self.password)
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConnectionConfig":
        return cls.model_validate(payload)


class ResolvedConfig(BaseModel):
    """Connection descriptor plus the container that backs it, if any."""

    model_config = ConfigDict(frozen=True)

    connection: ConnectionConfig
    container: Optional[ContainerSpec] = None

    @model_validator(mode="after")
    def check_container_reachable(self) -> "ResolvedConfig":
        """The descriptor must be able to reach the container it describes."""
        if self.container is None:
            return self

        connection = self.connection
        if connection.host != LOCALHOST:
            raise ValueError(
                f"Container databases are published on {LOCALHOST}, got host {connection.host!r}"
            )

        published = [port.host_port for port in self.container.ports]
        if connection.port not in published:
            raise ValueError(
                f"Port {connection.port} is not published by the container (ports: {published})"
            )

        environment = self.container.environment
        expected = {
            "POSTGRES_DB": connection.database,
            "POSTGRES_USER": connection.user,
            "POSTGRES_PASSWORD": connection.password,
        }
        for key, value in expected.items():
            if environment.get(key) != value:
                raise ValueError(f"Container {key} does not match the connection settings")

        return self
