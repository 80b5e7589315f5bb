"""Database URL handling."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

SQLITE_PREFIX = "sqlite:///"


@dataclass
class DatabaseConfig:
    """Where the project's data lives: a ``sqlite:///`` or ``postgresql://`` URL."""

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """``DATABASE_URL``, else ``LUMINA_DB_PATH`` as a SQLite file, else ``{base}/data/lumina.db``."""
        if os.environ.get("DATABASE_URL"):
            return cls(url=os.environ["DATABASE_URL"])
        if os.environ.get("LUMINA_DB_PATH"):
            return cls(url=SQLITE_PREFIX + os.environ["LUMINA_DB_PATH"])
        default = base_path / "data" / "lumina.db" if base_path else Path("lumina.db")
        return cls(url=f"{SQLITE_PREFIX}{default}")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def sqlite_path(self) -> str | None:
        """File path of a SQLite URL; ``:memory:`` when the URL names none."""
        if not self.is_sqlite:
            return None
        return self.url.replace(SQLITE_PREFIX, "", 1) or ":memory:"

    @property
    def sqlalchemy_url(self) -> str:
        # psycopg 3 is the installed driver, not psycopg2
        if self.url.startswith("postgresql://"):
            return "postgresql+psycopg://" + self.url[len("postgresql://"):]
        return self.url
