"""Shared fixtures: fixture resources, per-test SQLite databases and seeded accounts."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from lumina.api.app import create_app
from lumina.auth.policies import PolicyRegistry
from lumina.auth.types import AuthUser
from lumina.config import LuminaConfig, NestedConfig, TenancyConfig
from lumina.container import Container
from lumina.mailer import Mailer
from lumina.persistence.config import DatabaseConfig
from lumina.registry.loader import load_registry
from lumina.services.context import RequestContext

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "resources"

PASSWORD = "correct-horse-battery"

MEMBER_PERMISSIONS = [
    "blogs.index",
    "blogs.show",
    "blogs.store",
    "blogs.update",
    "posts.index",
    "posts.show",
    "posts.store",
    "posts.update",
    "comments.*",
    "tags.*",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's environment out of configuration."""
    for name in ("DATABASE_URL", "LUMINA_DB_PATH", "LUMINA_BASE_PATH", "LUMINA_TENANCY",
                 "LUMINA_TENANCY_IDENTIFIER", "LUMINA_RESOURCES_PATH", "LUMINA_SECRET_KEY",
                 "LUMINA_NESTED_MAX_OPERATIONS", "LUMINA_EXPOSE_RESET_TOKENS", "LUMINA_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clean_policies(monkeypatch):
    """Policies registered inside a test disappear afterwards."""
    monkeypatch.setattr(PolicyRegistry, "_policies", {})


@pytest.fixture
def registry():
    return load_registry(FIXTURES_DIR)


@pytest.fixture
def make_config(tmp_path):
    def _make(strategy: str = "none", **overrides) -> LuminaConfig:
        overrides.setdefault("nested", NestedConfig(max_operations=10))
        return LuminaConfig(
            base_path=tmp_path,
            database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'test.db'}"),
            resources_path=FIXTURES_DIR,
            secret_key="test-secret-key-with-enough-length",
            tenancy=TenancyConfig(strategy=strategy),
            **overrides,
        )

    return _make


class RecordingMailer(Mailer):
    """Keeps outgoing mail in memory."""

    def __init__(self):
        super().__init__()
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))

    def last_token(self) -> str:
        """The token at the end of the last message (reset token or accept link)."""
        body = self.sent[-1][2]
        if body.endswith("/accept"):
            return body.rsplit("/", 2)[-2]
        return body.rsplit(" ", 1)[-1]


class Seeder:
    """Creates roles, organizations and users directly in the system tables."""

    def __init__(self, container: Container):
        self.container = container

    def role(self, slug: str, permissions: list[str]):
        with self.container.db.transaction() as conn:
            existing = self.container.accounts.find_role(conn, slug)
            if existing is not None:
                return existing
            return self.container.accounts.create_role(conn, slug, permissions=permissions)

    def organization(self, slug: str, name: str | None = None) -> dict:
        with self.container.db.transaction() as conn:
            return self.container.accounts.create_organization(conn, name or slug.title(), slug)

    def user(
        self,
        email: str,
        role: str | None = None,
        organization: dict | None = None,
        verified: bool = True,
    ) -> AuthUser:
        accounts = self.container.accounts
        with self.container.db.transaction() as conn:
            row = accounts.find_user_by_email(conn, email)
            if row is None:
                row = accounts.create_user(
                    conn,
                    name=email.split("@")[0].title(),
                    email=email,
                    password_hash=self.container.password_service.hash(PASSWORD),
                    verified=verified,
                )
            organization_id = organization["id"] if organization else None
            if role is not None and accounts.role_for(conn, row["id"], organization_id) is None:
                accounts.assign_role(conn, row["id"], accounts.find_role(conn, role).id, organization_id)
        return AuthUser.from_row(row)

    def admin_and_member(self, organization: dict | None = None) -> tuple[AuthUser, AuthUser]:
        self.role("admin", ["*"])
        self.role("member", MEMBER_PERMISSIONS)
        admin = self.user("admin@example.com", "admin", organization)
        member = self.user("member@example.com", "member", organization)
        return admin, member

    def headers(self, user: AuthUser) -> dict[str, str]:
        pair = self.container.jwt_service.generate_token_pair(user.id)
        return {"Authorization": f"Bearer {pair.access_token}"}


@pytest.fixture
def make_ctx():
    def _make(user: AuthUser | None = None, organization: str | None = None) -> RequestContext:
        return RequestContext(user=user, organization=organization, ip_address="127.0.0.1")

    return _make


@pytest.fixture
def container(make_config):
    """Services wired against an empty database, tenancy disabled."""
    built = Container.build(make_config(), password_rounds=4)
    yield built
    built.close()


@pytest.fixture
def route_container(make_config):
    """Services wired for route tenancy (``/api/{organization}/...``)."""
    built = Container.build(make_config("route"), password_rounds=4)
    yield built
    built.close()


@pytest.fixture
def seed(container):
    return Seeder(container)


@pytest.fixture
def route_seed(route_container):
    return Seeder(route_container)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def make_client(make_config, mailer):
    """Start an application; the container is built by the lifespan."""
    clients = []

    def _make(strategy: str = "none", **overrides) -> TestClient:
        app = create_app(make_config(strategy, **overrides), password_rounds=4, mailer=mailer)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def client_seed(client):
    return Seeder(client.app.state.container)


@pytest.fixture
def route_client(make_client):
    return make_client("route")


@pytest.fixture
def route_client_seed(route_client):
    return Seeder(route_client.app.state.container)


@pytest.fixture
def seeder():
    """Seeder for a client started inside the test."""
    return lambda client: Seeder(client.app.state.container)
