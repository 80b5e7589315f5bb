"""Application configuration.

Settings come from an optional ``lumina.yaml`` in the project directory,
overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lumina.persistence.config import DatabaseConfig

TENANCY_STRATEGIES = ("none", "route", "subdomain")
TENANCY_IDENTIFIERS = ("id", "slug", "uuid")

# Credential-like fields that never leave the server or reach the audit log
BASE_HIDDEN_FIELDS = frozenset({
    "password",
    "password_hash",
    "password_confirmation",
    "remember_token",
    "api_token",
    "secret",
    "two_factor_secret",
    "two_factor_recovery_codes",
})


@dataclass
class TenancyConfig:
    strategy: str = "none"
    identifier: str = "slug"
    foreign_key: str = "organization_id"

    @property
    def enabled(self) -> bool:
        return self.strategy != "none"


@dataclass
class NestedConfig:
    path: str = "nested"
    max_operations: int = 50
    allowed_models: list[str] | None = None


@dataclass
class LuminaConfig:
    """Top-level settings for one Lumina project."""

    base_path: Path
    database: DatabaseConfig
    resources_path: Path
    secret_key: str = "dev-secret-key-change-in-production"
    tenancy: TenancyConfig = field(default_factory=TenancyConfig)
    nested: NestedConfig = field(default_factory=NestedConfig)
    audit_exclude: frozenset[str] = BASE_HIDDEN_FIELDS
    hidden: frozenset[str] = BASE_HIDDEN_FIELDS
    max_per_page: int = 100
    expose_reset_tokens: bool = False
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "info"

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> LuminaConfig:
        """Build configuration for the project rooted at *base_path*.

        Resolution order (later wins):
        1. Built-in defaults
        2. ``{base_path}/lumina.yaml``
        3. Environment variables (LUMINA_*, DATABASE_URL)
        """
        if base_path is None:
            base_path = Path(os.environ.get("LUMINA_BASE_PATH", Path.cwd()))

        data: dict[str, Any] = {}
        config_file = base_path / "lumina.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}

        tenancy_data = data.get("tenancy") or {}
        tenancy = TenancyConfig(
            strategy=os.environ.get("LUMINA_TENANCY", tenancy_data.get("strategy", "none")),
            identifier=os.environ.get(
                "LUMINA_TENANCY_IDENTIFIER", tenancy_data.get("identifier", "slug")
            ),
            foreign_key=tenancy_data.get("foreign_key", "organization_id"),
        )
        if tenancy.strategy not in TENANCY_STRATEGIES:
            raise ValueError(f"Unknown tenancy strategy '{tenancy.strategy}'")
        if tenancy.identifier not in TENANCY_IDENTIFIERS:
            raise ValueError(f"Unknown organization identifier '{tenancy.identifier}'")

        nested_data = data.get("nested") or {}
        nested = NestedConfig(
            path=nested_data.get("path", "nested"),
            max_operations=int(os.environ.get(
                "LUMINA_NESTED_MAX_OPERATIONS", nested_data.get("max_operations", 50)
            )),
            allowed_models=nested_data.get("allowed_models"),
        )

        audit_data = data.get("audit") or {}
        pagination = data.get("pagination") or {}
        resources_path = Path(os.environ.get(
            "LUMINA_RESOURCES_PATH", base_path / data.get("resources", "resources")
        ))

        return cls(
            base_path=base_path,
            database=DatabaseConfig.from_env(base_path),
            resources_path=resources_path,
            secret_key=os.environ.get("LUMINA_SECRET_KEY", cls.secret_key),
            tenancy=tenancy,
            nested=nested,
            audit_exclude=BASE_HIDDEN_FIELDS | frozenset(audit_data.get("exclude", [])),
            hidden=BASE_HIDDEN_FIELDS | frozenset(data.get("hidden", [])),
            max_per_page=int(pagination.get("max_per_page", 100)),
            expose_reset_tokens=_env_flag(
                "LUMINA_EXPOSE_RESET_TOKENS", data.get("expose_reset_tokens", False)
            ),
            cors_origins=list(data.get("cors_origins", [])),
            log_level=os.environ.get("LUMINA_LOG_LEVEL", data.get("log_level", "info")),
        )


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return bool(default)
    return value.lower() in ("1", "true", "yes")
