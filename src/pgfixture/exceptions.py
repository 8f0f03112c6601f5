"""
Exceptions raised while provisioning a disposable test database.

Every setup failure carries the component and the stage it came from so the
test run can report where provisioning stopped.
"""

from typing import Dict, Optional


class PgFixtureError(Exception):
    """Base exception for pgfixture errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        stage: Optional[str] = None,
        context: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.component = component
        self.stage = stage
        self.context = context or {}

    def get_detailed_message(self) -> str:
        """Message prefixed with component and stage, followed by context."""
        prefix = "/".join(part for part in (self.component, self.stage) if part)
        detailed = f"[{prefix}] {self.message}" if prefix else self.message
        if self.context:
            details = ", ".join(f"{key}={value}" for key, value in self.context.items())
            detailed = f"{detailed} ({details})"
        return detailed


class StartFailure(PgFixtureError):
    """Container could not be started or never became usable."""

    def __init__(self, message: str, stage: str = "start", **kwargs):
        kwargs.setdefault("component", "container_runtime")
        super().__init__(message, stage=stage, **kwargs)


class ConfigResolutionFailure(PgFixtureError):
    """Password provider failed while resolving configuration."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("component", "resolver")
        kwargs.setdefault("stage", "resolve")
        super().__init__(message, **kwargs)


class DatabaseConnectionFailure(PgFixtureError):
    """Setup connection to the database could not be opened."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "connect")
        super().__init__(message, **kwargs)


class MigrationFailure(PgFixtureError):
    """A migration failed to apply."""

    def __init__(self, message: str, version: Optional[str] = None, **kwargs):
        kwargs.setdefault("stage", "migrate")
        super().__init__(message, **kwargs)
        self.version = version
        if version:
            self.context.setdefault("version", version)


class SeedFailure(PgFixtureError):
    """Seed routine raised."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "seed")
        super().__init__(message, **kwargs)


class ContextError(PgFixtureError):
    """Run context key published twice or read before publication."""
    pass
