"""
Schema migration module for pgfixture

Applies versioned migrations to a freshly provisioned PostgreSQL database.
Migrations are ``NNN_name.sql`` files (with optional
``NNN_name.rollback.sql``) or ``NNN_name.py`` modules exposing ``up(conn)``
and optionally ``down(conn)``.
"""

import hashlib
import importlib.util
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from psycopg2.extensions import connection as PostgresConnection

logger = logging.getLogger(__name__)

MIGRATION_FILENAME = re.compile(r"^(\d+)_(.+)\.(sql|py)$")


class MigrationError(Exception):
    """Base exception for migration errors."""
    pass


@dataclass
class MigrationResult:
    """Result of a migration operation."""
    success: bool
    version: Optional[str] = None
    message: str = ""
    applied: List[str] = field(default_factory=list)
    error: Optional[Exception] = None


@dataclass
class AppliedMigration:
    """Record of an applied migration."""
    version: str
    description: Optional[str]
    applied_at: datetime
    execution_time_ms: Optional[int]
    checksum: str


@dataclass
class MigrationStatus:
    """Current migration status."""
    current_version: Optional[str]
    applied_migrations: List[AppliedMigration]
    pending_migrations: List["Migration"]


class Migration:
    """Represents a single SQL migration with its rollback."""

    def __init__(self, migration_file: Path, rollback_file: Optional[Path] = None):
        """Initialize migration from SQL files."""
        self.migration_file = migration_file
        self.rollback_file = rollback_file
        self._validate_files()

    def _validate_files(self):
        """Validate migration files exist and are readable."""
        if not self.migration_file.exists():
            raise MigrationError(f"Migration file not found: {self.migration_file}")

        if not self.migration_file.is_file():
            raise MigrationError(f"Not a file: {self.migration_file}")

        if self.rollback_file and not self.rollback_file.exists():
            logger.warning(f"Rollback file not found: {self.rollback_file}")
            self.rollback_file = None

    def _match(self) -> re.Match:
        match = MIGRATION_FILENAME.match(self.migration_file.name)
        if not match:
            raise MigrationError(f"Invalid migration filename: {self.migration_file.name}")
        return match

    @property
    def version(self) -> str:
        """Get migration version from filename (e.g., '001')."""
        return self._match().group(1)

    @property
    def name(self) -> str:
        """Get migration name from filename (e.g., 'initial_schema')."""
        return self._match().group(2)

    @property
    def checksum(self) -> str:
        """Calculate SHA-256 checksum of migration content."""
        content = self.migration_file.read_text(encoding="utf-8")
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    @property
    def has_rollback(self) -> bool:
        return self.rollback_file is not None

    def get_sql(self) -> str:
        """Read and return the forward migration SQL."""
        return self.migration_file.read_text(encoding="utf-8")

    def get_rollback_sql(self) -> Optional[str]:
        """Read and return the rollback SQL."""
        if not self.rollback_file:
            return None
        return self.rollback_file.read_text(encoding="utf-8")

    def get_description(self) -> str:
        """Extract description from SQL comment."""
        for line in self.get_sql().split("\n")[:10]:  # Check first 10 lines
            if line.strip().startswith("-- Description:"):
                return line.replace("-- Description:", "").strip()
        return self.name.replace("_", " ").title()

    def apply(self, conn: PostgresConnection) -> None:
        """Execute the migration SQL."""
        with conn.cursor() as cursor:
            cursor.execute(self.get_sql())

    def rollback(self, conn: PostgresConnection) -> None:
        """Execute the rollback SQL."""
        if not self.rollback_file:
            raise MigrationError(f"No rollback file for migration {self.version}")

        with conn.cursor() as cursor:
            cursor.execute(self.get_rollback_sql())


class PythonMigration(Migration):
    """Migration defined by ``up``/``down`` functions in a Python module."""

    def __init__(self, migration_file: Path):
        super().__init__(migration_file)
        self._module = None

    def _load(self):
        if self._module is None:
            module_name = f"pgfixture_migration_{self.version}_{self.name}"
            spec = importlib.util.spec_from_file_location(module_name, self.migration_file)
            if spec is None or spec.loader is None:
                raise MigrationError(f"Cannot load migration module: {self.migration_file}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            if not callable(getattr(module, "up", None)):
                raise MigrationError(f"Migration {self.migration_file.name} has no up() function")
            self._module = module
        return self._module

    @property
    def has_rollback(self) -> bool:
        return callable(getattr(self._load(), "down", None))

    def get_description(self) -> str:
        doc = (self._load().__doc__ or "").strip()
        if doc:
            return doc.splitlines()[0]
        return self.name.replace("_", " ").title()

    def apply(self, conn: PostgresConnection) -> None:
        self._load().up(conn)

    def rollback(self, conn: PostgresConnection) -> None:
        if not self.has_rollback:
            raise MigrationError(f"No down() function for migration {self.version}")
        self._module.down(conn)


class MigrationRunner:
    """Executes and tracks migrations on an open database connection."""

    def __init__(self, conn: PostgresConnection, migrations_path: Union[str, Path]):
        """Initialize migration runner with an open connection."""
        self.conn = conn
        self.migrations_path = Path(migrations_path)
        self._ensure_migration_table()

    def _ensure_migration_table(self):
        """Ensure the migration ledger exists."""
        with self.conn.cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS public.schema_migrations (
                    version VARCHAR(255) PRIMARY KEY,
                    description TEXT,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    execution_time_ms INTEGER,
                    checksum VARCHAR(64) NOT NULL
                );
            """)
        self.conn.commit()

    def discover_migrations(self) -> List[Migration]:
        """Discover all migrations, ordered by ascending version."""
        if not self.migrations_path.exists():
            logger.warning(f"Migrations directory not found: {self.migrations_path}")
            return []

        migrations = {}
        for path in sorted(self.migrations_path.iterdir()):
            if not path.is_file() or path.name.endswith(".rollback.sql"):
                continue
            if path.name.startswith("__"):
                continue

            match = MIGRATION_FILENAME.match(path.name)
            if not match:
                logger.warning(f"Skipping invalid migration filename: {path.name}")
                continue

            version = match.group(1)
            if version in migrations:
                raise MigrationError(
                    f"Duplicate migration version {version}: "
                    f"{migrations[version].migration_file.name} and {path.name}"
                )

            if match.group(3) == "py":
                migrations[version] = PythonMigration(path)
            else:
                rollback_file = self.migrations_path / f"{path.stem}.rollback.sql"
                migrations[version] = Migration(
                    migration_file=path,
                    rollback_file=rollback_file if rollback_file.exists() else None,
                )

        return [migrations[v] for v in sorted(migrations, key=lambda v: (int(v), v))]

    def get_applied_migrations(self) -> List[AppliedMigration]:
        """Get list of migrations that have been applied."""
        with self.conn.cursor() as cursor:
            cursor.execute("""
                SELECT version, description, applied_at, execution_time_ms, checksum
                FROM public.schema_migrations;
            """)
            rows = cursor.fetchall()

        applied = [
            AppliedMigration(
                version=row[0],
                description=row[1],
                applied_at=row[2],
                execution_time_ms=row[3],
                checksum=row[4],
            )
            for row in rows
        ]
        return sorted(applied, key=lambda m: (int(m.version), m.version))

    def get_pending_migrations(self) -> List[Migration]:
        """Get list of migrations that haven't been applied."""
        applied_versions = {m.version for m in self.get_applied_migrations()}
        return [m for m in self.discover_migrations() if m.version not in applied_versions]

    def migrate(self, target_version: Optional[str] = None) -> MigrationResult:
        """
        Apply all pending migrations up to target version.

        Each migration and its ledger row are committed together. The first
        failure is rolled back and reported; later migrations are not run.
        """
        pending = self.get_pending_migrations()

        if target_version:
            pending = [m for m in pending if int(m.version) <= int(target_version)]

        if not pending:
            return MigrationResult(success=True, message="No pending migrations")

        applied = []
        for migration in pending:
            start_time = time.time()
            logger.info(f"Applying migration {migration.version}: {migration.name}")

            try:
                migration.apply(self.conn)

                execution_time_ms = int((time.time() - start_time) * 1000)
                with self.conn.cursor() as cursor:
                    cursor.execute("""
                        INSERT INTO public.schema_migrations
                        (version, description, checksum, execution_time_ms)
                        VALUES (%s, %s, %s, %s);
                    """, (
                        migration.version,
                        migration.get_description(),
                        migration.checksum,
                        execution_time_ms,
                    ))

                self.conn.commit()
                applied.append(migration.version)
                logger.info(f"Successfully applied migration {migration.version}: {migration.name}")

            except Exception as e:
                self.conn.rollback()
                logger.error(f"Migration {migration.version} failed: {e}")
                return MigrationResult(
                    success=False,
                    version=migration.version,
                    message=f"Migration {migration.version} ({migration.name}) failed: {e}",
                    applied=applied,
                    error=e,
                )

        return MigrationResult(
            success=True,
            version=applied[-1],
            message=f"Applied {len(applied)} migration(s)",
            applied=applied,
        )

    def rollback(self, target_version: str) -> MigrationResult:
        """Roll back applied migrations newer than target version, newest first."""
        to_rollback = [
            m for m in reversed(self.get_applied_migrations())
            if int(m.version) > int(target_version)
        ]

        if not to_rollback:
            return MigrationResult(
                success=True,
                message=f"Already at version {target_version} or earlier",
            )

        all_migrations = {m.version: m for m in self.discover_migrations()}
        rolled_back = []

        for applied_migration in to_rollback:
            migration = all_migrations.get(applied_migration.version)
            if not migration:
                raise MigrationError(
                    f"Migration file not found for version {applied_migration.version}"
                )

            try:
                logger.info(f"Rolling back migration {migration.version}: {migration.name}")
                migration.rollback(self.conn)
                with self.conn.cursor() as cursor:
                    cursor.execute(
                        "DELETE FROM public.schema_migrations WHERE version = %s;",
                        (migration.version,),
                    )
                self.conn.commit()
                rolled_back.append(migration.version)

            except Exception as e:
                self.conn.rollback()
                logger.error(f"Failed to rollback migration {migration.version}: {e}")
                return MigrationResult(
                    success=False,
                    version=migration.version,
                    message=f"Rollback of {migration.version} failed: {e}",
                    applied=rolled_back,
                    error=e,
                )

        return MigrationResult(
            success=True,
            version=target_version,
            message=f"Rolled back {len(rolled_back)} migration(s)",
            applied=rolled_back,
        )

    def status(self) -> MigrationStatus:
        """Get current migration status."""
        applied = self.get_applied_migrations()
        return MigrationStatus(
            current_version=applied[-1].version if applied else None,
            applied_migrations=applied,
            pending_migrations=self.get_pending_migrations(),
        )
