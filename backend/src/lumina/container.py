"""Wiring: build every service of a Lumina project from its configuration.

Shared by the HTTP application and the CLI.
"""

import logging
from dataclasses import dataclass

from lumina.audit.recorder import AuditRecorder
from lumina.auth.accounts import AccountStore
from lumina.auth.jwt_service import JWTService
from lumina.auth.password import PasswordService
from lumina.auth.policies import Authorizer
from lumina.auth.types import AuthUser, TokenClaims
from lumina.config import LuminaConfig
from lumina.invitations.service import InvitationService
from lumina.mailer import Mailer
from lumina.nested.executor import NestedExecutor
from lumina.persistence.database import Database
from lumina.persistence.schema import build_metadata
from lumina.registry.loader import ResourceRegistry, load_registry
from lumina.registry.validator import validate_resources_dir
from lumina.services.middleware import check_middleware
from lumina.services.resources import ResourceService
from lumina.tenancy.resolver import TenantResolver
from lumina.validation.engine import ValidationEngine

logger = logging.getLogger(__name__)


def load_checked_registry(config: LuminaConfig) -> ResourceRegistry:
    """Load the registry, logging schema findings without blocking startup."""
    issues = validate_resources_dir(config.resources_path)
    if issues:
        error_count = sum(1 for i in issues if i.severity == "error")
        warn_count = sum(1 for i in issues if i.severity == "warning")
        for issue in issues:
            if issue.severity == "error":
                logger.error("Resource schema error: %s", issue)
            else:
                logger.warning("Resource schema warning: %s", issue)
        logger.warning(
            "Resource validation: %d error(s), %d warning(s). "
            "Run 'lumina resources validate' for details.",
            error_count,
            warn_count,
        )

    registry = load_registry(config.resources_path, organization_key=config.tenancy.foreign_key)
    check_middleware(registry)
    # Table collisions and exists/unique targets
    build_metadata(registry)
    return registry


@dataclass
class Container:
    config: LuminaConfig
    registry: ResourceRegistry
    db: Database
    accounts: AccountStore
    jwt_service: JWTService
    password_service: PasswordService
    resolver: TenantResolver
    authorizer: Authorizer
    engine: ValidationEngine
    mailer: Mailer
    resources: ResourceService
    nested: NestedExecutor
    invitations: InvitationService

    @classmethod
    def build(
        cls,
        config: LuminaConfig,
        *,
        create_tables: bool = True,
        password_rounds: int = 12,
        mailer: Mailer | None = None,
    ) -> "Container":
        registry = load_checked_registry(config)

        db = Database(config.database)
        db.connect()
        db.initialize(registry, create=create_tables)

        accounts = AccountStore(db.system)
        resolver = TenantResolver(config.tenancy, accounts)
        authorizer = Authorizer()
        engine = ValidationEngine()
        mailer = mailer or Mailer()
        resources = ResourceService(
            registry=registry,
            db=db,
            resolver=resolver,
            authorizer=authorizer,
            engine=engine,
            recorder=AuditRecorder(db.system.audit_logs, config.audit_exclude),
            hidden=config.hidden,
            max_per_page=config.max_per_page,
        )
        logger.info(
            "Loaded %d resources (tenancy: %s)", len(registry), config.tenancy.strategy
        )
        return cls(
            config=config,
            registry=registry,
            db=db,
            accounts=accounts,
            jwt_service=JWTService(config.secret_key),
            password_service=PasswordService(rounds=password_rounds),
            resolver=resolver,
            authorizer=authorizer,
            engine=engine,
            mailer=mailer,
            resources=resources,
            nested=NestedExecutor(resources, config.nested),
            invitations=InvitationService(db, accounts, resolver, engine, mailer),
        )

    def load_user(self, claims: TokenClaims) -> AuthUser | None:
        """Resolve token claims to a user; revoked tokens and deleted users yield None."""
        with self.db.connection() as conn:
            if claims.jti and self.accounts.is_revoked(conn, claims.jti):
                return None
            row = self.accounts.find_user(conn, claims.user_id)
        return AuthUser.from_row(row) if row else None

    def close(self) -> None:
        self.db.close()
