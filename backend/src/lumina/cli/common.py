"""Helpers shared by CLI commands."""

import os
from pathlib import Path

import click

from lumina.config import LuminaConfig
from lumina.errors import RegistryError


def project_config() -> LuminaConfig:
    """Configuration for the project in the working directory.

    ``LUMINA_BASE_PATH`` wins; run from ``backend/`` the parent directory
    is the project.
    """
    if os.environ.get("LUMINA_BASE_PATH"):
        return LuminaConfig.from_env()
    cwd = Path.cwd()
    base_path = cwd.parent if cwd.name == "backend" else cwd
    return LuminaConfig.from_env(base_path)


def migrations_path(config: LuminaConfig) -> Path:
    return config.base_path / "migrations"


def fail(message: str) -> None:
    click.echo(click.style(message, fg="red"), err=True)
    raise SystemExit(1)


def load_project_registry(config: LuminaConfig):
    """Load the registry or exit with the loader's message."""
    from lumina.container import load_checked_registry

    if not config.resources_path.exists():
        fail(f"Error: Resources directory not found at {config.resources_path}")
    try:
        return load_checked_registry(config)
    except RegistryError as e:
        fail(f"Invalid resource configuration: {e}")
