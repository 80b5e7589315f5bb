"""Build SQLAlchemy tables from resource descriptors."""

import sqlalchemy as sa

from lumina.errors import RegistryError
from lumina.persistence.system import SystemTables, build_system_tables
from lumina.persistence.types import column_type
from lumina.registry.loader import ResourceRegistry
from lumina.registry.types import ModelDescriptor
from lumina.validation.checks import parse_rules

# Rules whose first parameter names a table and second (optional) a column
LOOKUP_RULES = ("exists", "unique")


def build_resource_table(
    metadata: sa.MetaData,
    descriptor: ModelDescriptor,
    registry: ResourceRegistry | None = None,
) -> sa.Table:
    """Define the table backing one resource.

    belongs_to foreign keys become FOREIGN KEY constraints when the target
    resource is known; the organization reference points at ``organizations``.
    """
    references: dict[str, str] = {}
    if registry is not None:
        for relation in descriptor.relations.values():
            if relation.is_belongs_to:
                target = registry.get(relation.resource)
                if target is not None:
                    references[relation.foreign_key] = f"{target.table}.{target.primary_key}"
    if descriptor.organization_key:
        references[descriptor.organization_key] = "organizations.id"

    columns = []
    for f in descriptor.fields:
        args: list = [f.name, column_type(f.type)]
        if f.name in references:
            args.append(sa.ForeignKey(references[f.name]))
        kwargs = {"nullable": f.nullable and not f.primary_key}
        if f.primary_key:
            kwargs["primary_key"] = True
            kwargs["autoincrement"] = f.type == "integer"
        if f.default is not None:
            kwargs["default"] = f.default
        if f.name == descriptor.organization_key or f.name == "deleted_at":
            kwargs["index"] = True
        columns.append(sa.Column(*args, **kwargs))
    return sa.Table(descriptor.table, metadata, *columns)


def build_metadata(registry: ResourceRegistry) -> tuple[sa.MetaData, SystemTables, dict[str, sa.Table]]:
    """Build the complete schema: system tables plus one table per resource.

    Returns:
        (metadata, system tables, resource slug -> table)
    """
    metadata = sa.MetaData()
    system = build_system_tables(metadata)
    tables = {}
    for descriptor in registry:
        if descriptor.table in metadata.tables:
            raise RegistryError(
                f"resource '{descriptor.slug}': table '{descriptor.table}' is already defined"
            )
        tables[descriptor.slug] = build_resource_table(metadata, descriptor, registry)
    for descriptor in registry:
        check_lookup_rules(metadata, descriptor)
    return metadata, system, tables


def check_lookup_rules(metadata: sa.MetaData, descriptor: ModelDescriptor) -> None:
    """``exists``/``unique`` must name a known table and column.

    Raises:
        RegistryError: Unknown table or column
    """
    for rules in descriptor.validation.rule_maps():
        for field_name, rule_string in rules.items():
            for rule in parse_rules(rule_string):
                if rule.name not in LOOKUP_RULES:
                    continue
                where = f"resource '{descriptor.slug}': field '{field_name}' rule '{rule.name}'"
                if not rule.params or rule.params[0] not in metadata.tables:
                    table_name = rule.params[0] if rule.params else ""
                    raise RegistryError(f"{where} names unknown table '{table_name}'")
                column = rule.params[1] if len(rule.params) > 1 else field_name
                if column not in metadata.tables[rule.params[0]].c:
                    raise RegistryError(f"{where} names unknown column '{rule.params[0]}.{column}'")
