"""Postman Collection v2.1 export of every enabled route."""

import json
from typing import Any

from lumina.config import LuminaConfig
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor

COLLECTION_SCHEMA = "https://schema.getpostman.com/json/collection/v2.1.0/collection.json"

SAMPLE_VALUES: dict[str, Any] = {
    "string": "",
    "text": "",
    "integer": 0,
    "float": 0.0,
    "boolean": False,
    "date": "2024-01-01",
    "datetime": "2024-01-01T00:00:00+00:00",
    "json": {},
    "uuid": "",
}

# action -> (name template, method, path suffix, has body)
ACTION_ROUTES = {
    "index": ("List {slug}", "GET", [], False),
    "store": ("Create {slug}", "POST", [], True),
    "trashed": ("List trashed {slug}", "GET", ["trashed"], False),
    "show": ("Show {slug}", "GET", [":id"], False),
    "update": ("Update {slug}", "PUT", [":id"], True),
    "destroy": ("Delete {slug}", "DELETE", [":id"], False),
    "restore": ("Restore {slug}", "POST", [":id", "restore"], False),
    "forceDelete": ("Force delete {slug}", "DELETE", [":id", "force-delete"], False),
}

# Columns the engine fills in itself
_GENERATED = {"created_at", "updated_at", "deleted_at"}


def _request(name: str, method: str, path: list[str], body: dict[str, Any] | None = None) -> dict[str, Any]:
    request: dict[str, Any] = {
        "method": method,
        "header": [{"key": "Accept", "value": "application/json"}],
        "url": {
            "raw": "{{baseUrl}}/" + "/".join(path),
            "host": ["{{baseUrl}}"],
            "path": path,
        },
    }
    if body is not None:
        request["header"].append({"key": "Content-Type", "value": "application/json"})
        request["body"] = {
            "mode": "raw",
            "raw": json.dumps(body, indent=2),
            "options": {"raw": {"language": "json"}},
        }
    return {"name": name, "request": request}


def sample_body(descriptor: ModelDescriptor, organization_key: str | None = None) -> dict[str, Any]:
    """Example payload with every writable field."""
    return {
        f.name: SAMPLE_VALUES.get(f.type, "")
        for f in descriptor.fields
        if not f.primary_key and f.name not in _GENERATED and f.name != organization_key
    }


class PostmanExporter:
    def __init__(self, registry: ResourceRegistry, config: LuminaConfig):
        self.registry = registry
        self.config = config

    @property
    def prefix(self) -> list[str]:
        if self.config.tenancy.strategy == "route":
            return ["api", "{{organization}}"]
        return ["api"]

    def resource_folder(self, descriptor: ModelDescriptor) -> dict[str, Any]:
        items = []
        for action in descriptor.actions:
            name, method, suffix, has_body = ACTION_ROUTES[action]
            body = sample_body(descriptor, descriptor.organization_key) if has_body else None
            items.append(_request(
                name.format(slug=descriptor.slug), method, self.prefix + [descriptor.slug] + suffix, body
            ))
        if descriptor.audit.enabled:
            items.append(_request(
                f"Audit history of {descriptor.slug}", "GET", self.prefix + [descriptor.slug, ":id", "audit"]
            ))
        return {"name": descriptor.slug, "item": items}

    def auth_folder(self) -> dict[str, Any]:
        base = ["api", "auth"]
        credentials = {"email": "user@example.com", "password": "password"}
        new_password = {"password": "new-password", "password_confirmation": "new-password"}
        return {
            "name": "auth",
            "item": [
                _request("Login", "POST", base + ["login"], credentials),
                _request("Refresh", "POST", base + ["refresh"], {"refresh_token": "{{refreshToken}}"}),
                _request("Logout", "POST", base + ["logout"]),
                _request("Register", "POST", base + ["register"], {
                    "name": "New User", "email": "new@example.com", **new_password,
                }),
                _request("Me", "GET", base + ["me"]),
                _request("Recover password", "POST", base + ["password", "recover"], {"email": "user@example.com"}),
                _request("Reset password", "POST", base + ["password", "reset"], {
                    "token": "{{resetToken}}", **new_password,
                }),
            ],
        }

    def nested_request(self) -> dict[str, Any]:
        operations = [
            {"action": "create", "model": slug, "data": {}}
            for slug in (self.config.nested.allowed_models or self.registry.list_slugs())[:1]
        ]
        return _request(
            "Nested operations", "POST", self.prefix + [self.config.nested.path], {"operations": operations}
        )

    def export(self, base_url: str = "http://localhost:8000", name: str = "Lumina API") -> dict[str, Any]:
        items = [self.auth_folder()]
        items.extend(self.resource_folder(d) for d in sorted(self.registry, key=lambda d: d.slug))
        items.append(self.nested_request())

        variables = [
            {"key": "baseUrl", "value": base_url},
            {"key": "token", "value": ""},
            {"key": "refreshToken", "value": ""},
            {"key": "resetToken", "value": ""},
        ]
        if self.config.tenancy.strategy == "route":
            variables.append({"key": "organization", "value": ""})

        return {
            "info": {"name": name, "schema": COLLECTION_SCHEMA},
            "auth": {
                "type": "bearer",
                "bearer": [{"key": "token", "value": "{{token}}", "type": "string"}],
            },
            "item": items,
            "variable": variables,
        }
