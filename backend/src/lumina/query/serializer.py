"""Render rows into response records, stripping hidden columns."""

from collections.abc import Callable
from typing import Any

from lumina.query.compiler import Aggregate
from lumina.query.includes import IncludeTree
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor

HiddenFn = Callable[[ModelDescriptor], set[str] | frozenset[str]]


class RecordSerializer:
    def __init__(self, registry: ResourceRegistry, hidden_for: HiddenFn):
        self.registry = registry
        self.hidden_for = hidden_for

    def serialize(
        self,
        descriptor: ModelDescriptor,
        row: dict[str, Any],
        *,
        tree: IncludeTree | None = None,
        fields: dict[str, frozenset[str]] | None = None,
        aggregates: list[Aggregate] | None = None,
    ) -> dict[str, Any]:
        hidden = self.hidden_for(descriptor)
        selected = (fields or {}).get(descriptor.slug)
        record: dict[str, Any] = {}
        for name in descriptor.field_names:
            if name in hidden or (selected is not None and name not in selected):
                continue
            record[name] = row.get(name)
        for aggregate in aggregates or []:
            value = row.get(aggregate.label)
            record[aggregate.label] = bool(value) if aggregate.kind == "exists" else int(value or 0)
        for name, subtree in (tree or {}).items():
            related = self.registry.relation_target(descriptor, name)
            value = row.get(name)
            if isinstance(value, list):
                record[name] = [
                    self.serialize(related, item, tree=subtree, fields=fields) for item in value
                ]
            elif value is not None:
                record[name] = self.serialize(related, value, tree=subtree, fields=fields)
            else:
                record[name] = None
        return record
