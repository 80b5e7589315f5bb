"""Rule layers and their per-action, per-role resolution.

Rule strings use the pipe-separated notation ``required|string|max:255``.
An action layer (store/update) is either uniform (one field map for every
caller) or role-keyed (one field map per role slug, with an optional ``*``
fallback). Both shapes are parsed once when the registry loads.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from lumina.errors import Forbidden, RegistryError

PRESENCE_MODIFIERS = frozenset({"required", "nullable", "sometimes"})
RULE_SEPARATOR = "|"
WILDCARD_ROLE = "*"


def _freeze(rules: dict[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(rules))


@dataclass(frozen=True)
class UniformRules:
    """The same field rules apply to every caller."""

    fields: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def resolve(self, role_slug: str | None) -> Mapping[str, str]:
        return self.fields

    def maps(self) -> list[Mapping[str, str]]:
        return [self.fields]


@dataclass(frozen=True)
class PerRoleRules:
    """Field rules keyed by role slug, with an optional ``*`` fallback."""

    by_role: Mapping[str, Mapping[str, str]]
    wildcard: Mapping[str, str] | None = None

    def resolve(self, role_slug: str | None) -> Mapping[str, str]:
        """Pick the field rules for a role.

        Raises:
            Forbidden: When neither the role nor ``*`` has an entry. The
                caller's role has no contract for this action, which is an
                authorization problem rather than a validation one.
        """
        if role_slug is not None and role_slug in self.by_role:
            return self.by_role[role_slug]
        if self.wildcard is not None:
            return self.wildcard
        raise Forbidden("Your role is not allowed to perform this action.")

    def maps(self) -> list[Mapping[str, str]]:
        """Every role entry, then the wildcard."""
        maps = list(self.by_role.values())
        if self.wildcard is not None:
            maps.append(self.wildcard)
        return maps


RuleSet = UniformRules | PerRoleRules


def normalize_rule(value: Any) -> str:
    """Turn a YAML rule value (None, string, or list) into a rule string."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return RULE_SEPARATOR.join(str(v) for v in value if v)
    return str(value).strip()


def parse_rule_map(data: Any, where: str) -> Mapping[str, str]:
    if data is None:
        return _freeze({})
    if not isinstance(data, dict):
        raise RegistryError(f"{where}: expected a mapping of field -> rules")
    return _freeze({str(k): normalize_rule(v) for k, v in data.items()})


def parse_rule_set(data: Any, where: str) -> RuleSet | None:
    """Parse an action layer into a RuleSet.

    A mapping whose values are all mappings is role-keyed; a mapping of
    plain rule values is uniform. Mixing both shapes is a configuration error.
    """
    if data is None:
        return None
    if not isinstance(data, dict):
        raise RegistryError(f"{where}: expected a mapping")

    nested = [k for k, v in data.items() if isinstance(v, dict)]
    if nested and len(nested) != len(data):
        raise RegistryError(
            f"{where}: mixes role-keyed and field-keyed rules ({', '.join(map(str, nested))})"
        )

    if not nested or not data:
        return UniformRules(parse_rule_map(data, where))

    wildcard = None
    by_role: dict[str, Mapping[str, str]] = {}
    for role, rules in data.items():
        parsed = parse_rule_map(rules, f"{where}.{role}")
        if role == WILDCARD_ROLE:
            wildcard = parsed
        else:
            by_role[str(role)] = parsed
    return PerRoleRules(by_role=MappingProxyType(by_role), wildcard=wildcard)


def merge_rules(base: Mapping[str, str], layer: Mapping[str, str]) -> dict[str, str]:
    """Merge a resolved action layer onto the base rules.

    - empty value: the base rule applies unchanged
    - bare presence modifier: prepended to the base rule
    - anything else: complete override of the base rule

    Only fields named by the layer survive.
    """
    merged: dict[str, str] = {}
    for field_name, rule in layer.items():
        base_rule = base.get(field_name, "")
        if not rule:
            merged[field_name] = base_rule
        elif rule in PRESENCE_MODIFIERS:
            merged[field_name] = RULE_SEPARATOR.join(r for r in (rule, base_rule) if r)
        else:
            merged[field_name] = rule
    return merged
