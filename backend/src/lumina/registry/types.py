"""Resource descriptor types.

Descriptors are built once by the loader and never mutated afterwards:
every dataclass here is frozen and collection attributes are tuples,
frozensets or read-only mappings.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from lumina.validation.rules import RuleSet

# Every action a resource can expose, in route registration order
ACTIONS = (
    "index",
    "show",
    "store",
    "update",
    "destroy",
    "trashed",
    "restore",
    "forceDelete",
)

# Actions that only exist for soft-deleting resources
SOFT_DELETE_ACTIONS = frozenset({"trashed", "restore", "forceDelete"})

FIELD_TYPES = frozenset({
    "string",
    "text",
    "integer",
    "float",
    "boolean",
    "date",
    "datetime",
    "json",
    "uuid",
})

RELATION_TYPES = frozenset({"belongs_to", "has_many", "has_one"})


def _empty_map() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: str = "string"
    nullable: bool = True
    default: Any = None
    primary_key: bool = False


@dataclass(frozen=True)
class RelationDefinition:
    """A named relation to another resource.

    Attributes:
        name: Relation name used in includes, search paths and owner paths
        type: "belongs_to", "has_many" or "has_one"
        resource: Slug of the related resource
        foreign_key: For belongs_to the column on this resource; for
            has_many/has_one the column on the related resource
    """

    name: str
    type: str
    resource: str
    foreign_key: str

    @property
    def is_belongs_to(self) -> bool:
        return self.type == "belongs_to"

    @property
    def is_many(self) -> bool:
        return self.type == "has_many"


@dataclass(frozen=True)
class SortField:
    field: str
    descending: bool = False

    @classmethod
    def parse(cls, token: str) -> "SortField":
        token = token.strip()
        if token.startswith("-"):
            return cls(field=token[1:], descending=True)
        return cls(field=token)

    def __str__(self) -> str:
        return f"-{self.field}" if self.descending else self.field


@dataclass(frozen=True)
class PaginationConfig:
    enabled: bool = True
    per_page: int = 15


@dataclass(frozen=True)
class QueryConfig:
    """Allow-lists for the query surface of a resource."""

    filters: frozenset[str] = frozenset()
    sorts: frozenset[str] = frozenset()
    default_sort: tuple[SortField, ...] = ()
    search: tuple[str, ...] = ()
    includes: frozenset[str] = frozenset()
    fields: frozenset[str] = frozenset()
    pagination: PaginationConfig = field(default_factory=PaginationConfig)


@dataclass(frozen=True)
class ValidationConfig:
    """The three rule layers: base rules, action layers, custom messages."""

    rules: Mapping[str, str] = field(default_factory=_empty_map)
    store: RuleSet | None = None
    update: RuleSet | None = None
    messages: Mapping[str, str] = field(default_factory=_empty_map)

    def layer_for(self, action: str) -> RuleSet | None:
        if action == "store":
            return self.store
        if action == "update":
            return self.update
        raise ValueError(f"No rule layer for action '{action}'")

    def rule_maps(self) -> list[Mapping[str, str]]:
        """The base rules followed by every field map of every action layer."""
        maps = [self.rules]
        for layer in (self.store, self.update):
            if layer is not None:
                maps.extend(layer.maps())
        return maps


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = False
    exclude: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ModelDescriptor:
    """Everything the engine knows about one registered resource."""

    slug: str
    table: str
    fields: tuple[FieldDefinition, ...]
    primary_key: str = "id"
    key_type: str = "integer"
    relations: Mapping[str, RelationDefinition] = field(default_factory=_empty_map)
    owner_path: tuple[str, ...] = ()
    organization_key: str | None = None
    timestamps: bool = True
    soft_deletes: bool = False
    query: QueryConfig = field(default_factory=QueryConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    hidden: frozenset[str] = frozenset()
    public_actions: frozenset[str] = frozenset()
    except_actions: frozenset[str] = frozenset()
    middleware: Mapping[str, tuple[str, ...]] = field(default_factory=_empty_map)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def has_field(self, name: str) -> bool:
        return self.get_field(name) is not None

    @property
    def tenancy_mode(self) -> str:
        """"direct", "owner" or "global"."""
        if self.organization_key:
            return "direct"
        if self.owner_path:
            return "owner"
        return "global"

    @property
    def actions(self) -> tuple[str, ...]:
        """Actions this resource exposes, in registration order."""
        return tuple(
            a for a in ACTIONS
            if a not in self.except_actions
            and (self.soft_deletes or a not in SOFT_DELETE_ACTIONS)
        )

    def supports(self, action: str) -> bool:
        return action in self.actions

    def middleware_for(self, action: str) -> tuple[str, ...]:
        return tuple(self.middleware.get("all", ())) + tuple(self.middleware.get(action, ()))
