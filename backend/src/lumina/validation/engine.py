"""Validation engine: resolve rule layers, then check a payload against them."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lumina.errors import ValidationFailed
from lumina.validation.checks import (
    RecordLookup,
    RuleContext,
    RuleRegistry,
    parse_rules,
    size_kind,
)
from lumina.validation.messages import render_message
from lumina.validation.rules import PRESENCE_MODIFIERS, merge_rules

if TYPE_CHECKING:
    from lumina.registry.types import ModelDescriptor


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


@dataclass
class ValidationResult:
    data: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, list[str]] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors


class ValidationEngine:
    """Checks payloads against pipe-separated rule strings.

    Only fields that have a rule survive into ``ValidationResult.data``;
    everything else in the payload is dropped without error.
    """

    def resolve_rules(
        self, descriptor: ModelDescriptor, action: str, role_slug: str | None
    ) -> dict[str, str]:
        """Field rules for one action and caller role.

        Without an action layer the base rules apply as-is.

        Raises:
            Forbidden: The layer is role-keyed and neither the role nor
                ``*`` has an entry
        """
        base = descriptor.validation.rules
        layer = descriptor.validation.layer_for(action)
        if layer is None:
            return dict(base)
        return merge_rules(base, layer.resolve(role_slug))

    def check(
        self,
        rules: Mapping[str, str],
        payload: Mapping[str, Any],
        *,
        messages: Mapping[str, str] | None = None,
        lookup: RecordLookup | None = None,
        ignore: tuple[str, Any] | None = None,
        deferred: Collection[str] = (),
    ) -> ValidationResult:
        """Validate *payload* against *rules* without raising.

        Args:
            rules: field -> rule string
            payload: Raw request fields
            messages: Custom messages (``field.rule`` or ``rule`` keys)
            lookup: Database access for ``exists``/``unique``
            ignore: (column, value) excluded from ``unique`` checks
            deferred: Fields whose value is not known yet (nested-batch
                references); only their presence is checked
        """
        result = ValidationResult()
        for field_name, rule_string in rules.items():
            parsed = parse_rules(rule_string)
            names = {r.name for r in parsed}
            present = field_name in payload
            value = payload.get(field_name)
            if isinstance(value, str) and value == "":
                value = None

            if field_name in deferred and present:
                result.data[field_name] = payload[field_name]
                continue
            if not present and "sometimes" in names:
                continue
            if is_empty(value):
                if "required" in names:
                    result.errors[field_name] = [
                        render_message(field_name, "required", (), messages)
                    ]
                    continue
                if not present:
                    continue
                if value is None and "nullable" in names:
                    result.data[field_name] = None
                    continue

            ctx = RuleContext(
                field=field_name, payload=payload, rules=parsed, lookup=lookup, ignore=ignore
            )
            failure = None
            for r in parsed:
                if r.name in PRESENCE_MODIFIERS:
                    continue
                if not RuleRegistry.get(r.name)(value, r.params, ctx):
                    failure = render_message(
                        field_name, r.name, r.params, messages, size_kind(value, ctx)
                    )
                    break
            if failure is not None:
                result.errors[field_name] = [failure]
            else:
                result.data[field_name] = value
        return result

    def validate(
        self,
        descriptor: ModelDescriptor,
        action: str,
        role_slug: str | None,
        payload: Mapping[str, Any],
        *,
        lookup: RecordLookup | None = None,
        ignore: tuple[str, Any] | None = None,
        deferred: Collection[str] = (),
    ) -> dict[str, Any]:
        """Resolve rules, validate and return the allow-listed data.

        Raises:
            Forbidden: No rule contract for the caller's role
            ValidationFailed: Any rule failed
        """
        rules = self.resolve_rules(descriptor, action, role_slug)
        result = self.check(
            rules,
            payload,
            messages=descriptor.validation.messages,
            lookup=lookup,
            ignore=ignore,
            deferred=deferred,
        )
        if not result.valid:
            raise ValidationFailed(result.errors)
        return result.data
