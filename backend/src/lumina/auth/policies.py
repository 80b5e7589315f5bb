"""Resource policies.

Every resource is guarded by a policy. The default ``ResourcePolicy``
grants an action when the caller's role in the active organization holds
a matching permission string. Applications refine behaviour per resource
by subclassing and registering with ``@policy("slug")``.

Example:
    @policy("posts")
    class PostPolicy(ResourcePolicy):
        def update(self, user, context, entity=None):
            if entity is not None and entity.get("author_id") != user.id:
                return False
            return super().update(user, context, entity)

        def hidden_columns(self, user):
            return set() if user else {"internal_notes"}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from lumina.auth.permissions import EMPTY_PERMISSIONS, PermissionSet, Role
from lumina.auth.types import AuthUser
from lumina.errors import Forbidden, Unauthenticated
from lumina.registry.types import ModelDescriptor

logger = logging.getLogger(__name__)

# Action -> policy method
ACTION_METHODS = {
    "index": "view_any",
    "show": "view",
    "store": "create",
    "update": "update",
    "destroy": "delete",
    "trashed": "view_trashed",
    "restore": "restore",
    "forceDelete": "force_delete",
}


@dataclass
class PolicyContext:
    descriptor: ModelDescriptor
    organization: dict[str, Any] | None = None
    role: Role | None = None

    @property
    def permissions(self) -> PermissionSet:
        return self.role.permission_set if self.role else EMPTY_PERMISSIONS

    def can(self, action: str) -> bool:
        return self.permissions.allows(self.descriptor.slug, action)


class ResourcePolicy:
    """Permission-string policy; the default for every resource."""

    def before(self, user: AuthUser, context: PolicyContext) -> bool | None:
        """Short-circuit hook. Return True/False to decide, None to continue."""
        return None

    def view_any(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("index")

    def view(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("show")

    def create(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("store")

    def update(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("update")

    def delete(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("destroy")

    def view_trashed(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("trashed")

    def restore(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("restore")

    def force_delete(self, user, context: PolicyContext, entity=None) -> bool:
        return context.can("forceDelete")

    def hidden_columns(self, user: AuthUser | None) -> set[str]:
        """Extra fields to strip for this caller (None when unauthenticated)."""
        return set()


class PolicyRegistry:
    """Class-level registry of policy classes by resource slug."""

    _policies: ClassVar[dict[str, type[ResourcePolicy]]] = {}

    @classmethod
    def register(cls, slug: str, policy_class: type[ResourcePolicy]) -> None:
        cls._policies[slug] = policy_class
        logger.debug("Registered policy %s for '%s'", policy_class.__name__, slug)

    @classmethod
    def get(cls, slug: str) -> ResourcePolicy:
        return cls._policies.get(slug, ResourcePolicy)()

    @classmethod
    def has(cls, slug: str) -> bool:
        return slug in cls._policies

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations (for testing)."""
        cls._policies.clear()


def policy(slug: str) -> Callable[[type[ResourcePolicy]], type[ResourcePolicy]]:
    """Class decorator registering a policy for a resource slug."""

    def decorator(cls: type[ResourcePolicy]) -> type[ResourcePolicy]:
        PolicyRegistry.register(slug, cls)
        return cls

    return decorator


class Authorizer:
    """Runs policies for (user, action, resource, organization, entity)."""

    def __init__(self, registry: type[PolicyRegistry] = PolicyRegistry):
        self.registry = registry

    def check(
        self,
        user: AuthUser | None,
        action: str,
        descriptor: ModelDescriptor,
        organization: dict[str, Any] | None = None,
        role: Role | None = None,
        entity: dict[str, Any] | None = None,
    ) -> tuple[bool, str | None]:
        """Decide whether *user* may perform *action*.

        Returns:
            Tuple of (allowed, reason). reason is None if allowed.
        """
        if action in descriptor.public_actions:
            return True, None
        if user is None:
            return False, "Authentication required"

        policy_instance = self.registry.get(descriptor.slug)
        context = PolicyContext(descriptor=descriptor, organization=organization, role=role)
        decision = policy_instance.before(user, context)
        if decision is None:
            method = getattr(policy_instance, ACTION_METHODS[action])
            decision = method(user, context, entity)
        if decision:
            return True, None
        return False, "This action is unauthorized."

    def authorize(
        self,
        user: AuthUser | None,
        action: str,
        descriptor: ModelDescriptor,
        organization: dict[str, Any] | None = None,
        role: Role | None = None,
        entity: dict[str, Any] | None = None,
    ) -> None:
        """Like ``check`` but raises.

        Raises:
            Unauthenticated: No user on a non-public action
            Forbidden: The policy denied the action
        """
        allowed, reason = self.check(user, action, descriptor, organization, role, entity)
        if allowed:
            return
        if user is None:
            raise Unauthenticated()
        raise Forbidden(reason or "This action is unauthorized.")

    def hidden_columns(self, descriptor: ModelDescriptor, user: AuthUser | None) -> set[str]:
        return set(self.registry.get(descriptor.slug).hidden_columns(user))
