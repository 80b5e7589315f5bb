"""SQLAlchemy Core storage for resources and system tables.

Dialect-neutral (SQLite and PostgreSQL). Rows are returned as plain dicts.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from lumina.errors import RecordNotFound, StorageFailure
from lumina.persistence.config import DatabaseConfig
from lumina.persistence.schema import build_metadata
from lumina.persistence.system import SystemTables
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor

logger = logging.getLogger(__name__)

TRASHED_MODES = ("without", "only", "with")


def _install_sqlite_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries on pysqlite.

    The driver's implicit BEGIN handling breaks SAVEPOINT; emitting BEGIN
    ourselves makes nested transactions work.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Storage adapter built on SQLAlchemy Core."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine: Engine | None = None
        self.metadata: sa.MetaData | None = None
        self.system: SystemTables | None = None
        self.tables: dict[str, sa.Table] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        kwargs: dict[str, Any] = {}
        if self.config.is_sqlite:
            path = self.config.sqlite_path
            kwargs["connect_args"] = {"check_same_thread": False}
            if path == ":memory:":
                kwargs["poolclass"] = StaticPool
            elif path:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = sa.create_engine(self.config.sqlalchemy_url, **kwargs)
        if self.config.is_sqlite:
            _install_sqlite_hooks(self.engine)

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def initialize(self, registry: ResourceRegistry, create: bool = True) -> None:
        """Build table definitions for *registry* and optionally create them."""
        self.metadata, self.system, self.tables = build_metadata(registry)
        if create:
            self.metadata.create_all(self._require_engine())
            logger.info("Initialized %d resource tables", len(self.tables))

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Database is not connected")
        return self.engine

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Open a connection inside a transaction.

        Commits on success and rolls back when the block raises. Driver
        errors are re-raised as StorageFailure.
        """
        try:
            with self._require_engine().begin() as conn:
                yield conn
        except IntegrityError as exc:
            logger.warning("Constraint violation: %s", exc.orig)
            raise StorageFailure("The operation violates a data constraint.", constraint=True) from exc
        except SQLAlchemyError as exc:
            logger.exception("Storage failure")
            raise StorageFailure("The storage engine failed to complete the operation.") from exc

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Open a connection for reads (rolled back on exit)."""
        try:
            with self._require_engine().connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.exception("Storage failure")
            raise StorageFailure("The storage engine failed to complete the operation.") from exc

    # ------------------------------------------------------------------
    # Resource rows
    # ------------------------------------------------------------------

    def table(self, descriptor: ModelDescriptor) -> sa.Table:
        return self.tables[descriptor.slug]

    def coerce_key(self, descriptor: ModelDescriptor, raw: Any) -> Any:
        """Convert a path id to the primary key type.

        Raises:
            RecordNotFound: When the id cannot be a key of this resource
        """
        if descriptor.key_type == "integer":
            if isinstance(raw, int) and not isinstance(raw, bool):
                return raw
            try:
                return int(str(raw))
            except ValueError:
                raise RecordNotFound()
        return str(raw)

    @staticmethod
    def trashed_clause(descriptor: ModelDescriptor, table: sa.Table, trashed: str):
        """WHERE clause for the soft-delete mode, or None."""
        if not descriptor.soft_deletes or trashed == "with":
            return None
        if trashed == "only":
            return table.c.deleted_at.is_not(None)
        return table.c.deleted_at.is_(None)

    def insert(self, conn: Connection, descriptor: ModelDescriptor, values: dict[str, Any]) -> Any:
        """Insert a row and return its primary key."""
        table = self.table(descriptor)
        values = dict(values)
        pk = descriptor.primary_key
        if descriptor.key_type == "uuid" and not values.get(pk):
            values[pk] = str(uuid.uuid4())
        result = conn.execute(table.insert().values(**values))
        if values.get(pk) is not None:
            return values[pk]
        return result.inserted_primary_key[0]

    def find(
        self,
        conn: Connection,
        descriptor: ModelDescriptor,
        key: Any,
        *,
        where: list | None = None,
        trashed: str = "without",
    ) -> dict[str, Any] | None:
        table = self.table(descriptor)
        clauses = [table.c[descriptor.primary_key] == key, *(where or [])]
        soft = self.trashed_clause(descriptor, table, trashed)
        if soft is not None:
            clauses.append(soft)
        row = conn.execute(sa.select(table).where(*clauses)).mappings().first()
        return dict(row) if row is not None else None

    def update(
        self, conn: Connection, descriptor: ModelDescriptor, key: Any, values: dict[str, Any]
    ) -> None:
        if not values:
            return
        table = self.table(descriptor)
        conn.execute(
            table.update().where(table.c[descriptor.primary_key] == key).values(**values)
        )

    def delete(self, conn: Connection, descriptor: ModelDescriptor, key: Any) -> None:
        table = self.table(descriptor)
        conn.execute(table.delete().where(table.c[descriptor.primary_key] == key))

    def fetch_all(self, conn: Connection, statement: sa.Select) -> list[dict[str, Any]]:
        return [dict(row) for row in conn.execute(statement).mappings()]

    def scalar(self, conn: Connection, statement: sa.Select) -> Any:
        return conn.execute(statement).scalar()

    def value_exists(
        self,
        conn: Connection,
        table_name: str,
        column: str,
        value: Any,
        *,
        ignore: tuple[str, Any] | None = None,
    ) -> bool:
        """Check whether any row of a known table has ``column == value``.

        Args:
            ignore: Optional (column, value) pair excluding one row, used by
                ``unique`` on update to skip the row being updated
        """
        if self.metadata is None or table_name not in self.metadata.tables:
            raise ValueError(f"Unknown table '{table_name}'")
        table = self.metadata.tables[table_name]
        if column not in table.c:
            raise ValueError(f"Unknown column '{table_name}.{column}'")
        stmt = sa.select(sa.literal(1)).select_from(table).where(table.c[column] == value)
        if ignore is not None:
            stmt = stmt.where(table.c[ignore[0]] != ignore[1])
        return conn.execute(stmt.limit(1)).first() is not None
