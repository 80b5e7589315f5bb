"""Model registry: resource descriptors loaded from YAML configuration."""

from lumina.registry.loader import ResourceLoader, ResourceRegistry, load_registry
from lumina.registry.types import (
    ACTIONS,
    AuditConfig,
    FieldDefinition,
    ModelDescriptor,
    PaginationConfig,
    QueryConfig,
    RelationDefinition,
    SortField,
    ValidationConfig,
)

__all__ = [
    "ACTIONS",
    "AuditConfig",
    "FieldDefinition",
    "ModelDescriptor",
    "PaginationConfig",
    "QueryConfig",
    "RelationDefinition",
    "ResourceLoader",
    "ResourceRegistry",
    "SortField",
    "ValidationConfig",
    "load_registry",
]
