"""StorageAdapter Protocol: the interface the request pipeline relies on."""

from contextlib import AbstractContextManager
from typing import Any, Protocol, runtime_checkable

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from lumina.registry.types import ModelDescriptor


@runtime_checkable
class StorageAdapter(Protocol):
    """Interface implemented by ``lumina.persistence.database.Database``.

    Every data method takes an explicit connection so a caller can run
    several operations inside one transaction (nested batches do).
    """

    tables: dict[str, sa.Table]

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def transaction(self) -> AbstractContextManager[Connection]: ...

    def connection(self) -> AbstractContextManager[Connection]: ...

    def table(self, descriptor: ModelDescriptor) -> sa.Table: ...

    def coerce_key(self, descriptor: ModelDescriptor, raw: Any) -> Any: ...

    def insert(
        self, conn: Connection, descriptor: ModelDescriptor, values: dict[str, Any]
    ) -> Any: ...

    def find(
        self,
        conn: Connection,
        descriptor: ModelDescriptor,
        key: Any,
        *,
        where: list | None = None,
        trashed: str = "without",
    ) -> dict[str, Any] | None: ...

    def update(
        self, conn: Connection, descriptor: ModelDescriptor, key: Any, values: dict[str, Any]
    ) -> None: ...

    def delete(self, conn: Connection, descriptor: ModelDescriptor, key: Any) -> None: ...

    def fetch_all(self, conn: Connection, statement: sa.Select) -> list[dict[str, Any]]: ...

    def value_exists(
        self,
        conn: Connection,
        table_name: str,
        column: str,
        value: Any,
        *,
        ignore: tuple[str, Any] | None = None,
    ) -> bool: ...
