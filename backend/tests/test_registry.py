"""Tests for resource loading, registry checks and the JSON Schema validator."""

from pathlib import Path

import pytest

from lumina.errors import RegistryError, UnknownResource
from lumina.persistence.schema import build_metadata
from lumina.registry.loader import ResourceLoader, load_registry
from lumina.registry.types import SortField
from lumina.registry.validator import validate_resources_dir, validate_yaml_file
from lumina.validation.rules import PerRoleRules, UniformRules

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "resources"


def build(tmp_path, *documents):
    return load_registry(tmp_path, extra=list(documents))


ORGANIZATIONS_OWNED = {
    "resource": "projects",
    "fields": [{"name": "organization_id", "type": "integer"}, "name"],
}


class TestLoadingFixtures:
    def test_loads_every_resource(self, registry):
        assert sorted(registry.list_slugs()) == ["blogs", "comments", "posts", "tags"]

    def test_tenancy_modes(self, registry):
        assert registry.resolve("blogs").tenancy_mode == "direct"
        assert registry.resolve("posts").tenancy_mode == "owner"
        assert registry.resolve("comments").owner_path == ("post", "blog")
        assert registry.resolve("tags").tenancy_mode == "global"

    def test_primary_key_and_managed_columns_are_added(self, registry):
        posts = registry.resolve("posts")
        assert posts.field_names[0] == "id"
        assert posts.get_field("id").primary_key
        assert {"created_at", "updated_at", "deleted_at"} <= set(posts.field_names)

    def test_timestamps_can_be_disabled(self, registry):
        tags = registry.resolve("tags")
        assert tags.field_names == ["id", "name", "color"]

    def test_actions_follow_soft_deletes_and_exclusions(self, registry):
        assert registry.resolve("blogs").actions == (
            "index", "show", "store", "update", "destroy", "trashed", "restore", "forceDelete",
        )
        assert registry.resolve("comments").actions == ("index", "show", "store", "update", "destroy")
        assert registry.resolve("tags").actions == ("index", "show", "store", "update")
        assert not registry.resolve("tags").supports("destroy")

    def test_auditing_is_opt_in(self, registry):
        assert registry.resolve("posts").audit.enabled
        blogs = registry.resolve("blogs").audit
        assert blogs.enabled and blogs.exclude == frozenset({"description"})
        assert not registry.resolve("comments").audit.enabled

    def test_query_configuration(self, registry):
        posts = registry.resolve("posts").query
        assert posts.default_sort == (SortField("created_at", descending=True),)
        assert posts.pagination.per_page == 2
        assert "blog.title" in posts.search
        assert not registry.resolve("tags").query.pagination.enabled

    def test_rule_layers(self, registry):
        posts = registry.resolve("posts").validation
        assert isinstance(posts.store, PerRoleRules)
        assert set(posts.store.by_role) == {"admin"}
        assert posts.store.wildcard is not None
        blogs = registry.resolve("blogs").validation
        assert isinstance(blogs.store, UniformRules)
        assert registry.resolve("comments").validation.store is None

    def test_unknown_slug(self, registry):
        with pytest.raises(UnknownResource):
            registry.resolve("invoices")
        assert registry.get("invoices") is None

    def test_frozen_registry_rejects_registration(self, registry):
        with pytest.raises(RegistryError, match="frozen"):
            registry.register(ResourceLoader().resolve({"resource": "late"}))


class TestRegistryErrors:
    def test_reserved_slug(self, tmp_path):
        with pytest.raises(RegistryError, match="reserved"):
            build(tmp_path, {"resource": "nested"})

    def test_duplicate_slug(self, tmp_path):
        with pytest.raises(RegistryError, match="twice"):
            build(tmp_path, {"resource": "notes"}, {"resource": "notes"})

    def test_unknown_field_type(self):
        with pytest.raises(RegistryError, match="unknown type"):
            ResourceLoader().resolve({"resource": "notes", "fields": [{"name": "x", "type": "money"}]})

    def test_has_many_needs_foreign_key(self):
        with pytest.raises(RegistryError, match="explicit foreign_key"):
            ResourceLoader().resolve({
                "resource": "notes",
                "relations": {"children": {"type": "has_many", "resource": "notes"}},
            })

    def test_relation_to_unknown_resource(self, tmp_path):
        with pytest.raises(RegistryError, match="unknown resource"):
            build(tmp_path, {
                "resource": "notes",
                "fields": [{"name": "folder_id", "type": "integer"}],
                "relations": {"folder": {"resource": "folders"}},
            })

    def test_owner_path_through_has_many(self, tmp_path):
        with pytest.raises(RegistryError, match="belongs_to"):
            build(
                tmp_path,
                ORGANIZATIONS_OWNED,
                {
                    "resource": "tasks",
                    "fields": [{"name": "project_id", "type": "integer"}],
                    "relations": {
                        "projects": {"type": "has_many", "resource": "projects", "foreign_key": "organization_id"},
                    },
                    "owner": "projects",
                },
            )

    def test_owner_path_cycle(self, tmp_path):
        with pytest.raises(RegistryError, match="cycle"):
            build(
                tmp_path,
                {
                    "resource": "a",
                    "fields": [{"name": "b_id", "type": "integer"}],
                    "relations": {"b": {"resource": "b"}},
                    "owner": "b.a",
                },
                {
                    "resource": "b",
                    "fields": [{"name": "a_id", "type": "integer"}],
                    "relations": {"a": {"resource": "a"}},
                },
            )

    def test_owner_path_must_end_at_organization(self, tmp_path):
        with pytest.raises(RegistryError, match="no organization reference"):
            build(
                tmp_path,
                {"resource": "folders", "fields": ["name"]},
                {
                    "resource": "notes",
                    "fields": [{"name": "folder_id", "type": "integer"}],
                    "relations": {"folder": {"resource": "folders"}},
                    "owner": "folder",
                },
            )

    def test_direct_and_owner_together(self):
        with pytest.raises(RegistryError, match="both"):
            ResourceLoader().resolve({
                "resource": "notes",
                "fields": [{"name": "organization_id", "type": "integer"}],
                "owner": "folder",
            })

    def test_custom_organization_key(self, tmp_path):
        registry = load_registry(
            tmp_path,
            organization_key="team_id",
            extra=[{"resource": "notes", "fields": [{"name": "team_id", "type": "integer"}]}],
        )
        assert registry.resolve("notes").organization_key == "team_id"

    def test_unknown_rule(self, tmp_path):
        with pytest.raises(RegistryError, match="unknown rule"):
            build(tmp_path, {
                "resource": "notes",
                "fields": ["title"],
                "validation": {"rules": {"title": "required|shiny"}},
            })

    def test_mixed_rule_layer(self, tmp_path):
        with pytest.raises(RegistryError, match="mixes"):
            build(tmp_path, {
                "resource": "notes",
                "fields": ["title"],
                "validation": {"store": {"title": "required", "admin": {"title": "required"}}},
            })

    def test_allow_listed_field_must_exist(self, tmp_path):
        with pytest.raises(RegistryError, match="does not exist"):
            build(tmp_path, {"resource": "notes", "fields": ["title"], "query": {"sorts": ["priority"]}})

    def test_search_path_must_follow_relations(self, tmp_path):
        with pytest.raises(RegistryError, match="search path"):
            build(tmp_path, {"resource": "notes", "fields": ["title"], "query": {"search": ["folder.name"]}})

    def test_include_must_be_a_relation(self, tmp_path):
        with pytest.raises(RegistryError, match="include"):
            build(tmp_path, {"resource": "notes", "fields": ["title"], "query": {"includes": ["author"]}})

    def test_unknown_action(self):
        with pytest.raises(RegistryError, match="unknown action"):
            ResourceLoader().resolve({"resource": "notes", "except_actions": ["archive"]})


class TestSchemaValidation:
    def test_fixtures_are_valid(self):
        assert validate_resources_dir(FIXTURES_DIR) == []

    def test_unknown_top_level_key(self, tmp_path):
        path = tmp_path / "notes.yaml"
        path.write_text("resource: notes\ncolour: red\n")
        issues = validate_yaml_file(path)
        assert len(issues) == 1
        assert issues[0].severity == "error"
        assert "colour" in issues[0].message

    def test_bad_field_type_reports_location(self, tmp_path):
        path = tmp_path / "notes.yaml"
        path.write_text("resource: notes\nfields:\n  - {name: title, type: money}\n")
        issues = validate_yaml_file(path)
        assert issues
        assert issues[0].path.startswith("fields[0]")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "notes.yaml"
        path.write_text("")
        issues = validate_yaml_file(path)
        assert "empty" in issues[0].message

    def test_public_mutation_is_a_warning(self, tmp_path):
        (tmp_path / "notes.yaml").write_text("resource: notes\npublic_actions: [index, store]\n")
        issues = validate_resources_dir(tmp_path)
        assert [i.severity for i in issues] == ["warning"]
        strict = validate_resources_dir(tmp_path, strict=True)
        assert [i.severity for i in strict] == ["error"]

    def test_file_name_should_match_the_slug(self, tmp_path):
        path = tmp_path / "note.yaml"
        path.write_text("resource: notes\n")
        issues = validate_yaml_file(path)
        assert [(i.severity, i.path) for i in issues] == [("warning", "resource")]

    def test_missing_directory(self, tmp_path):
        issues = validate_resources_dir(tmp_path / "missing")
        assert "does not exist" in issues[0].message


class TestLookupRules:
    def rules(self, tmp_path, **rules):
        return build(tmp_path, {
            "resource": "notes",
            "fields": ["title", "owner_email"],
            "validation": {"rules": rules},
        })

    def test_known_tables_and_columns(self, tmp_path):
        registry = self.rules(tmp_path, title="unique:notes", owner_email="exists:users,email")
        metadata, _, _ = build_metadata(registry)
        assert "notes" in metadata.tables

    def test_unknown_table(self, tmp_path):
        with pytest.raises(RegistryError, match="unknown table 'nots'"):
            build_metadata(self.rules(tmp_path, title="unique:nots,title"))

    def test_unknown_column(self, tmp_path):
        with pytest.raises(RegistryError, match="unknown column 'users.handle'"):
            build_metadata(self.rules(tmp_path, owner_email="exists:users,handle"))

    def test_column_defaults_to_the_field_name(self, tmp_path):
        with pytest.raises(RegistryError, match="unknown column 'users.owner_email'"):
            build_metadata(self.rules(tmp_path, owner_email="exists:users"))

    def test_action_layers_are_checked(self, tmp_path):
        registry = build(tmp_path, {
            "resource": "notes",
            "fields": ["title"],
            "validation": {"rules": {"title": "string"}, "update": {"title": "unique:notes,name"}},
        })
        with pytest.raises(RegistryError, match="unknown column 'notes.name'"):
            build_metadata(registry)
