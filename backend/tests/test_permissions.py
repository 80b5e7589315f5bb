"""Tests for permission strings, roles and resource policies.

Covers:
- PermissionSet matching order (exact, resource wildcard, global wildcard)
- Authorizer decisions for public actions, anonymous callers and roles
- Custom policies registered with @policy, including before() and hidden_columns()
"""

import pytest

from lumina.auth.permissions import PermissionSet, Role
from lumina.auth.policies import Authorizer, PolicyRegistry, ResourcePolicy, policy
from lumina.auth.types import AuthUser
from lumina.errors import Forbidden, Unauthenticated


# ── Helpers ──────────────────────────────────────────────────────────────────


def make_role(*permissions: str, slug: str = "member") -> Role:
    return Role(id=1, slug=slug, name=slug.title(), permissions=permissions)


def make_user(user_id: int = 7) -> AuthUser:
    return AuthUser(id=user_id, email=f"user{user_id}@example.com", name="User")


@pytest.fixture
def authorizer(clean_policies):
    return Authorizer()


# ── PermissionSet ────────────────────────────────────────────────────────────


class TestPermissionSet:
    def test_exact_permission(self):
        permissions = PermissionSet.from_strings(["posts.index"])
        assert permissions.match("posts", "index") == "posts.index"
        assert permissions.match("posts", "store") is None

    def test_resource_wildcard(self):
        permissions = PermissionSet.from_strings(["posts.*"])
        assert permissions.match("posts", "forceDelete") == "posts.*"
        assert not permissions.allows("blogs", "index")

    def test_global_wildcard(self):
        permissions = PermissionSet.from_strings(["*"])
        assert permissions.match("anything", "restore") == "*"

    def test_exact_wins_over_wildcards(self):
        permissions = PermissionSet.from_strings(["*", "posts.*", "posts.show"])
        assert permissions.match("posts", "show") == "posts.show"
        assert permissions.match("posts", "index") == "posts.*"
        assert permissions.match("blogs", "index") == "*"

    def test_blank_entries_are_ignored(self):
        permissions = PermissionSet.from_strings(["", "  ", "tags.index"])
        assert permissions.exact == frozenset({"tags.index"})

    def test_role_builds_its_set_once(self):
        role = make_role("posts.index", "blogs.*")
        assert role.permission_set.allows("posts", "index")
        assert role.permission_set.allows("blogs", "destroy")
        assert not role.permission_set.allows("posts", "destroy")


# ── Authorizer ───────────────────────────────────────────────────────────────


class TestAuthorizer:
    def test_public_action_needs_no_user(self, authorizer, registry):
        assert authorizer.check(None, "index", registry.resolve("tags")) == (True, None)

    def test_anonymous_caller_is_unauthenticated(self, authorizer, registry):
        allowed, reason = authorizer.check(None, "index", registry.resolve("posts"))
        assert not allowed
        assert reason == "Authentication required"
        with pytest.raises(Unauthenticated):
            authorizer.authorize(None, "index", registry.resolve("posts"))

    def test_role_permission_grants_action(self, authorizer, registry):
        role = make_role("posts.index")
        assert authorizer.check(make_user(), "index", registry.resolve("posts"), role=role)[0]

    def test_missing_permission_is_forbidden(self, authorizer, registry):
        role = make_role("posts.index")
        with pytest.raises(Forbidden):
            authorizer.authorize(make_user(), "destroy", registry.resolve("posts"), role=role)

    def test_user_without_role_is_forbidden(self, authorizer, registry):
        with pytest.raises(Forbidden):
            authorizer.authorize(make_user(), "index", registry.resolve("posts"))

    def test_every_action_maps_to_a_policy_method(self, authorizer, registry):
        blogs = registry.resolve("blogs")
        role = make_role("blogs.*")
        for action in blogs.actions:
            assert authorizer.check(make_user(), action, blogs, role=role)[0], action


class TestCustomPolicies:
    def test_policy_refines_with_the_entity(self, authorizer, registry):
        @policy("posts")
        class PostPolicy(ResourcePolicy):
            def update(self, user, context, entity=None):
                if entity is not None and entity.get("status") == "published":
                    return False
                return super().update(user, context, entity)

        posts = registry.resolve("posts")
        role = make_role("posts.update")
        user = make_user()
        assert authorizer.check(user, "update", posts, role=role, entity={"status": "draft"})[0]
        assert not authorizer.check(user, "update", posts, role=role, entity={"status": "published"})[0]
        assert PolicyRegistry.has("posts")

    def test_before_short_circuits(self, authorizer, registry):
        @policy("blogs")
        class SuperUserPolicy(ResourcePolicy):
            def before(self, user, context):
                return True if user.id == 1 else None

        blogs = registry.resolve("blogs")
        assert authorizer.check(make_user(1), "forceDelete", blogs)[0]
        assert not authorizer.check(make_user(2), "forceDelete", blogs)[0]

    def test_policy_sees_the_organization(self, authorizer, registry):
        @policy("blogs")
        class ActiveOrganizationPolicy(ResourcePolicy):
            def create(self, user, context, entity=None):
                return bool(context.organization and context.organization.get("is_active"))

        blogs = registry.resolve("blogs")
        assert authorizer.check(make_user(), "store", blogs, organization={"id": 1, "is_active": True})[0]
        assert not authorizer.check(make_user(), "store", blogs, organization={"id": 1, "is_active": False})[0]

    def test_hidden_columns(self, authorizer, registry):
        @policy("posts")
        class PostPolicy(ResourcePolicy):
            def hidden_columns(self, user):
                return set() if user else {"body"}

        posts = registry.resolve("posts")
        assert authorizer.hidden_columns(posts, None) == {"body"}
        assert authorizer.hidden_columns(posts, make_user()) == set()
        assert authorizer.hidden_columns(registry.resolve("blogs"), None) == set()

    def test_unregistered_resource_uses_default_policy(self, clean_policies):
        assert type(PolicyRegistry.get("comments")) is ResourcePolicy
        assert not PolicyRegistry.has("comments")
