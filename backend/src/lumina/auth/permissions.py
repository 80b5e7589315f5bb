"""Permission strings and their matching.

A permission is ``"{resource}.{action}"``. Roles may also hold
``"{resource}.*"`` (every action on one resource) or ``"*"`` (everything).
Each role's strings are split into lookup sets once, so a check is at
most three set lookups.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

WILDCARD = "*"


@dataclass(frozen=True)
class PermissionSet:
    exact: frozenset[str] = frozenset()
    resource_wildcards: frozenset[str] = frozenset()
    everything: bool = False

    @classmethod
    def from_strings(cls, permissions: Iterable[str]) -> "PermissionSet":
        exact = set()
        resources = set()
        everything = False
        for permission in permissions:
            permission = str(permission).strip()
            if permission == WILDCARD:
                everything = True
            elif permission.endswith(".*"):
                resources.add(permission[:-2])
            elif permission:
                exact.add(permission)
        return cls(frozenset(exact), frozenset(resources), everything)

    def match(self, resource: str, action: str) -> str | None:
        """Return the permission that grants ``resource.action``, if any.

        Lookup order: exact, then ``resource.*``, then ``*``.
        """
        name = f"{resource}.{action}"
        if name in self.exact:
            return name
        if resource in self.resource_wildcards:
            return f"{resource}.*"
        if self.everything:
            return WILDCARD
        return None

    def allows(self, resource: str, action: str) -> bool:
        return self.match(resource, action) is not None


EMPTY_PERMISSIONS = PermissionSet()


@dataclass(frozen=True)
class Role:
    """A reusable permission template; its PermissionSet is built once."""

    id: int
    slug: str
    name: str
    permissions: tuple[str, ...] = ()
    permission_set: PermissionSet = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "permission_set", PermissionSet.from_strings(self.permissions))
