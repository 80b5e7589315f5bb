"""Load resource descriptors from YAML files and register them."""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from lumina.errors import RegistryError, UnknownResource
from lumina.registry.types import (
    ACTIONS,
    FIELD_TYPES,
    RELATION_TYPES,
    AuditConfig,
    FieldDefinition,
    ModelDescriptor,
    PaginationConfig,
    QueryConfig,
    RelationDefinition,
    SortField,
    ValidationConfig,
)
from lumina.validation.checks import unknown_rules
from lumina.validation.rules import parse_rule_map, parse_rule_set

logger = logging.getLogger(__name__)

RESERVED_SLUGS = frozenset({"auth", "invitations", "nested"})


class ResourceLoader:
    """Turns resource YAML documents into ModelDescriptor objects."""

    def __init__(self, organization_key: str = "organization_id"):
        self.organization_key = organization_key

    def load_dir(self, resources_path: Path) -> list[ModelDescriptor]:
        """Load every ``*.yaml`` / ``*.yml`` file in a directory."""
        if not resources_path.exists():
            logger.warning("Resources directory not found: %s", resources_path)
            return []

        descriptors = []
        files = sorted(resources_path.glob("*.yaml")) + sorted(resources_path.glob("*.yml"))
        for yaml_file in files:
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if data and "resource" in data:
                descriptors.append(self.resolve(data))
        return descriptors

    def resolve(self, data: dict) -> ModelDescriptor:
        """Build a descriptor from one parsed YAML document."""
        slug = str(data["resource"])
        where = f"resource '{slug}'"

        primary_key = data.get("primary_key", "id")
        key_type = data.get("key_type", "integer")
        if key_type not in ("integer", "uuid"):
            raise RegistryError(f"{where}: key_type must be 'integer' or 'uuid'")

        timestamps = bool(data.get("timestamps", True))
        soft_deletes = bool(data.get("soft_deletes", False))

        fields = self._resolve_fields(data.get("fields", []), where)
        names = {f.name for f in fields}
        if primary_key not in names:
            fields.insert(0, FieldDefinition(
                name=primary_key,
                type="uuid" if key_type == "uuid" else "integer",
                nullable=False,
                primary_key=True,
            ))
        else:
            fields = [
                FieldDefinition(f.name, f.type, False, f.default, True) if f.name == primary_key else f
                for f in fields
            ]
        if timestamps:
            for ts in ("created_at", "updated_at"):
                if ts not in names:
                    fields.append(FieldDefinition(name=ts, type="datetime"))
        if soft_deletes and "deleted_at" not in names:
            fields.append(FieldDefinition(name="deleted_at", type="datetime"))

        relations = {
            name: self._resolve_relation(name, rel, where)
            for name, rel in (data.get("relations") or {}).items()
        }

        owner = data.get("owner") or ""
        owner_path = tuple(p for p in str(owner).split(".") if p)

        organization_key = self.organization_key if self.organization_key in names else None
        if organization_key and owner_path:
            raise RegistryError(
                f"{where}: declares both '{organization_key}' and an owner path"
            )

        actions_data = data.get("except_actions", [])
        public_actions = frozenset(data.get("public_actions", []))
        for action in list(actions_data) + list(public_actions):
            if action not in ACTIONS:
                raise RegistryError(f"{where}: unknown action '{action}'")

        middleware = {
            str(k): tuple(v or ())
            for k, v in (data.get("middleware") or {}).items()
        }

        # Auditing is opt-in: a present "audit" section enables it unless it says otherwise
        audit_data = data.get("audit")
        if audit_data is None:
            audit_data = {"enabled": False}
        elif isinstance(audit_data, bool):
            audit_data = {"enabled": audit_data}

        return ModelDescriptor(
            slug=slug,
            table=data.get("table", slug),
            fields=tuple(fields),
            primary_key=primary_key,
            key_type=key_type,
            relations=MappingProxyType(relations),
            owner_path=owner_path,
            organization_key=organization_key,
            timestamps=timestamps,
            soft_deletes=soft_deletes,
            query=self._resolve_query(data.get("query") or {}),
            validation=self._resolve_validation(data.get("validation") or {}, where),
            audit=AuditConfig(
                enabled=bool(audit_data.get("enabled", True)),
                exclude=frozenset(audit_data.get("exclude", [])),
            ),
            hidden=frozenset(data.get("hidden", [])),
            public_actions=public_actions,
            except_actions=frozenset(actions_data),
            middleware=MappingProxyType(middleware),
        )

    def _resolve_fields(self, items: list, where: str) -> list[FieldDefinition]:
        fields = []
        for item in items:
            if isinstance(item, str):
                item = {"name": item}
            field_type = item.get("type", "string")
            if field_type not in FIELD_TYPES:
                raise RegistryError(f"{where}: field '{item.get('name')}' has unknown type '{field_type}'")
            fields.append(FieldDefinition(
                name=item["name"],
                type=field_type,
                nullable=item.get("nullable", True),
                default=item.get("default"),
                primary_key=item.get("primary_key", False),
            ))
        return fields

    def _resolve_relation(self, name: str, data: dict, where: str) -> RelationDefinition:
        rel_type = data.get("type", "belongs_to")
        if rel_type not in RELATION_TYPES:
            raise RegistryError(f"{where}: relation '{name}' has unknown type '{rel_type}'")
        if "resource" not in data:
            raise RegistryError(f"{where}: relation '{name}' does not name a resource")
        foreign_key = data.get("foreign_key")
        if not foreign_key:
            if rel_type != "belongs_to":
                raise RegistryError(f"{where}: relation '{name}' needs an explicit foreign_key")
            foreign_key = f"{name}_id"
        return RelationDefinition(
            name=name,
            type=rel_type,
            resource=data["resource"],
            foreign_key=foreign_key,
        )

    def _resolve_query(self, data: dict) -> QueryConfig:
        default_sort = data.get("default_sort") or ""
        if isinstance(default_sort, list):
            default_sort = ",".join(default_sort)
        pagination = data.get("pagination")
        if isinstance(pagination, bool):
            pagination = {"enabled": pagination}
        pagination = pagination or {}
        return QueryConfig(
            filters=frozenset(data.get("filters", [])),
            sorts=frozenset(data.get("sorts", [])),
            default_sort=tuple(
                SortField.parse(token) for token in str(default_sort).split(",") if token.strip()
            ),
            search=tuple(data.get("search", [])),
            includes=frozenset(data.get("includes", [])),
            fields=frozenset(data.get("fields", [])),
            pagination=PaginationConfig(
                enabled=pagination.get("enabled", True),
                per_page=int(pagination.get("per_page", 15)),
            ),
        )

    def _resolve_validation(self, data: dict, where: str) -> ValidationConfig:
        return ValidationConfig(
            rules=parse_rule_map(data.get("rules"), f"{where}.validation.rules"),
            store=parse_rule_set(data.get("store"), f"{where}.validation.store"),
            update=parse_rule_set(data.get("update"), f"{where}.validation.update"),
            messages=MappingProxyType({
                str(k): str(v) for k, v in (data.get("messages") or {}).items()
            }),
        )


class ResourceRegistry:
    """Maps resource slugs to descriptors.

    Populated once at startup; ``freeze()`` runs the cross-resource checks
    (relation targets, owner paths, allow-lists) and locks the registry.
    """

    def __init__(self, reserved: frozenset[str] = RESERVED_SLUGS):
        self._descriptors: dict[str, ModelDescriptor] = {}
        self._reserved = reserved
        self._frozen = False

    def register(self, descriptor: ModelDescriptor) -> None:
        if self._frozen:
            raise RegistryError("Registry is frozen; resources are registered at startup only")
        if descriptor.slug in self._reserved:
            raise RegistryError(f"Resource slug '{descriptor.slug}' is reserved")
        if descriptor.slug in self._descriptors:
            raise RegistryError(f"Resource '{descriptor.slug}' is registered twice")
        self._descriptors[descriptor.slug] = descriptor

    def freeze(self) -> None:
        for descriptor in self._descriptors.values():
            self._check_relations(descriptor)
            self._check_allow_lists(descriptor)
            self._check_rules(descriptor)
            self.owner_chain(descriptor)
        self._frozen = True

    def resolve(self, slug: str) -> ModelDescriptor:
        """Return the descriptor for a slug.

        Raises:
            UnknownResource: If the slug is not registered
        """
        descriptor = self._descriptors.get(slug)
        if descriptor is None:
            raise UnknownResource(f"Resource '{slug}' not found")
        return descriptor

    def get(self, slug: str) -> ModelDescriptor | None:
        return self._descriptors.get(slug)

    def list_slugs(self) -> list[str]:
        return list(self._descriptors.keys())

    def __iter__(self):
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def relation_target(self, descriptor: ModelDescriptor, relation_name: str) -> ModelDescriptor:
        relation = descriptor.relations[relation_name]
        return self.resolve(relation.resource)

    def walk_relation_path(
        self, descriptor: ModelDescriptor, path: str | tuple[str, ...]
    ) -> list[tuple[ModelDescriptor, RelationDefinition]]:
        """Follow a dot-separated relation path.

        Returns (source descriptor, relation) pairs, one per segment.
        Raises KeyError when a segment is not a relation.
        """
        segments = path.split(".") if isinstance(path, str) else path
        hops = []
        current = descriptor
        for segment in segments:
            relation = current.relations[segment]
            hops.append((current, relation))
            current = self.resolve(relation.resource)
        return hops

    def owner_chain(self, descriptor: ModelDescriptor) -> list[tuple[ModelDescriptor, RelationDefinition]]:
        """Resolve and validate a descriptor's owner path.

        Every hop must be a belongs_to relation, the path must end at a
        directly-owned resource, and no resource may be visited twice.
        """
        if not descriptor.owner_path:
            return []

        where = f"resource '{descriptor.slug}' owner path '{'.'.join(descriptor.owner_path)}'"
        visited = {descriptor.slug}
        hops = []
        current = descriptor
        for segment in descriptor.owner_path:
            relation = current.relations.get(segment)
            if relation is None:
                raise RegistryError(f"{where}: '{segment}' is not a relation of '{current.slug}'")
            if not relation.is_belongs_to:
                raise RegistryError(f"{where}: '{segment}' must be a belongs_to relation")
            target = self._descriptors.get(relation.resource)
            if target is None:
                raise RegistryError(f"{where}: unknown resource '{relation.resource}'")
            if target.slug in visited:
                raise RegistryError(f"{where}: cycle through '{target.slug}'")
            visited.add(target.slug)
            hops.append((current, relation))
            current = target

        if current.organization_key is None:
            raise RegistryError(
                f"{where}: ends at '{current.slug}', which has no organization reference"
            )
        return hops

    def _check_relations(self, descriptor: ModelDescriptor) -> None:
        for relation in descriptor.relations.values():
            target = self._descriptors.get(relation.resource)
            if target is None:
                raise RegistryError(
                    f"resource '{descriptor.slug}': relation '{relation.name}' "
                    f"targets unknown resource '{relation.resource}'"
                )
            holder = descriptor if relation.is_belongs_to else target
            if not holder.has_field(relation.foreign_key):
                raise RegistryError(
                    f"resource '{descriptor.slug}': relation '{relation.name}' foreign key "
                    f"'{relation.foreign_key}' is not a field of '{holder.slug}'"
                )

    def _check_rules(self, descriptor: ModelDescriptor) -> None:
        """Every rule name used by any layer must be registered."""
        for rules in descriptor.validation.rule_maps():
            for field_name, rule_string in rules.items():
                unknown = unknown_rules(rule_string)
                if unknown:
                    raise RegistryError(
                        f"resource '{descriptor.slug}': field '{field_name}' uses unknown "
                        f"rule(s) {', '.join(unknown)}"
                    )

    def _check_allow_lists(self, descriptor: ModelDescriptor) -> None:
        where = f"resource '{descriptor.slug}'"
        q = descriptor.query
        for name in list(q.filters) + list(q.sorts) + [s.field for s in q.default_sort]:
            if not descriptor.has_field(name):
                raise RegistryError(f"{where}: allow-listed field '{name}' does not exist")
        for name in q.fields:
            if not descriptor.has_field(name):
                raise RegistryError(f"{where}: selectable field '{name}' does not exist")
        for path in q.search:
            *relations, column = path.split(".")
            try:
                hops = self.walk_relation_path(descriptor, tuple(relations)) if relations else []
            except (KeyError, UnknownResource):
                raise RegistryError(f"{where}: search path '{path}' is not a relation path")
            target = self.resolve(hops[-1][1].resource) if hops else descriptor
            if not target.has_field(column):
                raise RegistryError(f"{where}: search field '{path}' does not exist")
        for path in q.includes:
            try:
                self.walk_relation_path(descriptor, path)
            except (KeyError, UnknownResource):
                raise RegistryError(f"{where}: include '{path}' is not a relation path")


def load_registry(
    resources_path: Path,
    organization_key: str = "organization_id",
    reserved: frozenset[str] = RESERVED_SLUGS,
    extra: list[dict[str, Any]] | None = None,
) -> ResourceRegistry:
    """Load, register and freeze every resource in a directory."""
    loader = ResourceLoader(organization_key=organization_key)
    registry = ResourceRegistry(reserved=reserved)
    for descriptor in loader.load_dir(resources_path):
        registry.register(descriptor)
    for data in extra or []:
        registry.register(loader.resolve(data))
    registry.freeze()
    return registry
