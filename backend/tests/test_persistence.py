"""Tests for configuration loading and the SQLAlchemy storage adapter."""

from datetime import date, datetime

import pytest
import sqlalchemy as sa

from lumina.config import BASE_HIDDEN_FIELDS, LuminaConfig
from lumina.errors import RecordNotFound, StorageFailure
from lumina.persistence import Database, DatabaseConfig, StorageAdapter
from lumina.persistence.types import coerce_value, column_type


class TestDatabaseConfig:
    def test_sqlite(self):
        config = DatabaseConfig(url="sqlite:////var/lib/app.db")
        assert config.is_sqlite and not config.is_postgresql
        assert config.sqlite_path == "/var/lib/app.db"
        assert config.sqlalchemy_url == "sqlite:////var/lib/app.db"

    def test_in_memory(self):
        assert DatabaseConfig(url="sqlite:///").sqlite_path == ":memory:"

    def test_postgresql_uses_psycopg(self):
        config = DatabaseConfig(url="postgresql://user:pw@db/app")
        assert config.is_postgresql
        assert config.sqlite_path is None
        assert config.sqlalchemy_url == "postgresql+psycopg://user:pw@db/app"

    def test_from_env(self, monkeypatch, tmp_path):
        assert DatabaseConfig.from_env(tmp_path).url == f"sqlite:///{tmp_path / 'data' / 'lumina.db'}"
        monkeypatch.setenv("LUMINA_DB_PATH", "/tmp/other.db")
        assert DatabaseConfig.from_env(tmp_path).url == "sqlite:////tmp/other.db"
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/app")
        assert DatabaseConfig.from_env(tmp_path).url == "postgresql://db/app"


class TestLuminaConfig:
    def test_defaults(self, tmp_path):
        config = LuminaConfig.from_env(tmp_path)
        assert config.tenancy.strategy == "none"
        assert not config.tenancy.enabled
        assert config.resources_path == tmp_path / "resources"
        assert config.nested.max_operations == 50
        assert config.hidden == BASE_HIDDEN_FIELDS
        assert config.expose_reset_tokens is False

    def test_project_file(self, tmp_path):
        (tmp_path / "lumina.yaml").write_text(
            "tenancy:\n"
            "  strategy: route\n"
            "  identifier: uuid\n"
            "nested:\n"
            "  max_operations: 5\n"
            "  allowed_models: [posts]\n"
            "audit:\n"
            "  exclude: [ssn]\n"
            "hidden: [internal_notes]\n"
            "pagination:\n"
            "  max_per_page: 25\n"
            "cors_origins: ['https://app.example.com']\n"
            "resources: config/resources\n"
        )
        config = LuminaConfig.from_env(tmp_path)
        assert config.tenancy.strategy == "route"
        assert config.tenancy.identifier == "uuid"
        assert config.nested.max_operations == 5
        assert config.nested.allowed_models == ["posts"]
        assert "ssn" in config.audit_exclude and "password" in config.audit_exclude
        assert "internal_notes" in config.hidden
        assert config.max_per_page == 25
        assert config.cors_origins == ["https://app.example.com"]
        assert config.resources_path == tmp_path / "config" / "resources"

    def test_environment_wins(self, tmp_path, monkeypatch):
        (tmp_path / "lumina.yaml").write_text("tenancy:\n  strategy: route\nexpose_reset_tokens: false\n")
        monkeypatch.setenv("LUMINA_TENANCY", "subdomain")
        monkeypatch.setenv("LUMINA_NESTED_MAX_OPERATIONS", "3")
        monkeypatch.setenv("LUMINA_SECRET_KEY", "from-the-environment")
        monkeypatch.setenv("LUMINA_EXPOSE_RESET_TOKENS", "true")
        monkeypatch.setenv("LUMINA_RESOURCES_PATH", str(tmp_path / "elsewhere"))
        config = LuminaConfig.from_env(tmp_path)
        assert config.tenancy.strategy == "subdomain"
        assert config.nested.max_operations == 3
        assert config.secret_key == "from-the-environment"
        assert config.expose_reset_tokens is True
        assert config.resources_path == tmp_path / "elsewhere"

    def test_base_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LUMINA_BASE_PATH", str(tmp_path))
        assert LuminaConfig.from_env().base_path == tmp_path

    @pytest.mark.parametrize("content, message", [
        ("tenancy:\n  strategy: header\n", "Unknown tenancy strategy 'header'"),
        ("tenancy:\n  identifier: name\n", "Unknown organization identifier 'name'"),
    ])
    def test_invalid_tenancy(self, tmp_path, content, message):
        (tmp_path / "lumina.yaml").write_text(content)
        with pytest.raises(ValueError, match=message):
            LuminaConfig.from_env(tmp_path)


class TestTypes:
    def test_column_types(self):
        assert isinstance(column_type("string"), sa.String)
        assert column_type("date").length == 10
        assert isinstance(column_type("json"), sa.JSON)
        assert isinstance(column_type("unheard-of"), sa.Text)

    @pytest.mark.parametrize("field_type, raw, expected", [
        ("integer", "42", 42),
        ("integer", 3.0, 3),
        ("float", "1.5", 1.5),
        ("float", 2, 2.0),
        ("boolean", "yes", True),
        ("boolean", "off", False),
        ("boolean", 0, False),
        ("date", date(2024, 5, 1), "2024-05-01"),
        ("date", datetime(2024, 5, 1, 12, 30), "2024-05-01"),
        ("datetime", datetime(2024, 5, 1, 12, 30), "2024-05-01T12:30:00"),
        ("json", '{"a": 1}', {"a": 1}),
        ("string", 7, "7"),
        ("integer", None, None),
    ])
    def test_coerce_value(self, field_type, raw, expected):
        assert coerce_value(field_type, raw) == expected

    @pytest.mark.parametrize("field_type, raw", [
        ("integer", "abc"),
        ("boolean", "maybe"),
        ("json", "{not json"),
    ])
    def test_uncoercible_values_pass_through(self, field_type, raw):
        assert coerce_value(field_type, raw) == raw


@pytest.fixture
def database(tmp_path, registry):
    db = Database(DatabaseConfig(url=f"sqlite:///{tmp_path / 'store.db'}"))
    db.connect()
    db.initialize(registry)
    yield db
    db.close()


class TestDatabase:
    def test_satisfies_the_storage_protocol(self, database):
        assert isinstance(database, StorageAdapter)

    def test_insert_and_find(self, database, registry):
        blogs = registry.resolve("blogs")
        with database.transaction() as conn:
            key = database.insert(conn, blogs, {"title": "Engineering"})
        with database.connection() as conn:
            assert database.find(conn, blogs, key)["title"] == "Engineering"
            assert database.find(conn, blogs, key + 1) is None

    def test_soft_deleted_rows_are_hidden(self, database, registry):
        blogs = registry.resolve("blogs")
        with database.transaction() as conn:
            key = database.insert(conn, blogs, {"title": "Old"})
            database.update(conn, blogs, key, {"deleted_at": "2024-01-01T00:00:00+00:00"})
        with database.connection() as conn:
            assert database.find(conn, blogs, key) is None
            assert database.find(conn, blogs, key, trashed="only") is not None
            assert database.find(conn, blogs, key, trashed="with") is not None

    def test_failed_transaction_rolls_back(self, database, registry):
        blogs = registry.resolve("blogs")
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                database.insert(conn, blogs, {"title": "Doomed"})
                raise RuntimeError("boom")
        with database.connection() as conn:
            assert database.fetch_all(conn, sa.select(database.table(blogs))) == []

    def test_savepoint_failure_keeps_the_outer_transaction(self, database, registry):
        blogs = registry.resolve("blogs")
        with database.transaction() as conn:
            key = database.insert(conn, blogs, {"title": "Kept"})
            with pytest.raises(sa.exc.IntegrityError):
                with conn.begin_nested():
                    database.insert(conn, blogs, {"id": key, "title": "Duplicate"})
        with database.connection() as conn:
            assert database.find(conn, blogs, key)["title"] == "Kept"

    def test_foreign_keys_are_enforced(self, database, registry):
        posts = registry.resolve("posts")
        with pytest.raises(StorageFailure) as excinfo:
            with database.transaction() as conn:
                database.insert(conn, posts, {"blog_id": 999, "title": "Orphan"})
        assert excinfo.value.status_code == 409
        assert excinfo.value.code == "CONSTRAINT_VIOLATION"

    def test_coerce_key(self, database, registry):
        blogs = registry.resolve("blogs")
        assert database.coerce_key(blogs, "12") == 12
        with pytest.raises(RecordNotFound):
            database.coerce_key(blogs, "twelve")

    def test_value_exists(self, database, registry):
        tags = registry.resolve("tags")
        with database.transaction() as conn:
            key = database.insert(conn, tags, {"name": "news"})
            assert database.value_exists(conn, "tags", "name", "news")
            assert not database.value_exists(conn, "tags", "name", "news", ignore=("id", key))
            assert not database.value_exists(conn, "tags", "name", "sports")
            with pytest.raises(ValueError):
                database.value_exists(conn, "secrets", "name", "news")
