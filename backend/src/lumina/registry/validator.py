"""
JSON Schema validation for resource YAML files.

Usage:
    from lumina.registry.validator import validate_resources_dir

    issues = validate_resources_dir(Path("resources"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
RESOURCE_SCHEMA = "resource.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a resource YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields[0]/type"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema(name: str = RESOURCE_SCHEMA) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def validate_yaml_file(
    yaml_path: Path,
    *,
    schema: dict[str, Any] | None = None,
) -> list[ValidationIssue]:
    """Validate a single resource YAML file.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if raw is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    validator = Draft202012Validator(schema or _load_schema())
    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(raw), key=_json_path)
    ]

    # Soft checks the schema cannot express
    if isinstance(raw, dict):
        slug = raw.get("resource")
        if isinstance(slug, str) and slug != yaml_path.stem:
            issues.append(ValidationIssue(
                file=yaml_path,
                message=f"resource '{slug}' is declared in a file named '{yaml_path.name}'",
                path="resource",
                severity="warning",
            ))
        public = raw.get("public_actions")
        public = public if isinstance(public, list) else []
        mutating = sorted(set(public) - {"index", "show", "trashed"})
        if mutating:
            issues.append(ValidationIssue(
                file=yaml_path,
                message=f"public_actions expose mutating actions to anonymous callers: {', '.join(mutating)}",
                path="public_actions",
                severity="warning",
            ))
    return issues


def validate_resources_dir(
    resources_dir: Path,
    *,
    strict: bool = False,
) -> list[ValidationIssue]:
    """Validate every ``*.yaml`` file in *resources_dir*.

    Args:
        resources_dir: Directory holding one YAML document per resource.
        strict:        If ``True``, warnings are escalated to errors.
    """
    if not resources_dir.is_dir():
        return [
            ValidationIssue(
                file=resources_dir,
                message=f"Resources directory does not exist: {resources_dir}",
            )
        ]

    try:
        schema = _load_schema()
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [ValidationIssue(file=_SCHEMAS_DIR, message=f"Failed to load JSON Schema: {exc}")]

    all_issues: list[ValidationIssue] = []
    for yaml_file in sorted(resources_dir.glob("*.yaml")):
        file_issues = validate_yaml_file(yaml_file, schema=schema)
        if strict:
            for issue in file_issues:
                if issue.severity == "warning":
                    issue.severity = "error"
        all_issues.extend(file_issues)
    return all_issues
