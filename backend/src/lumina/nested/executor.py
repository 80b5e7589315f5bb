"""Atomic nested batches of create/update/delete operations.

A batch goes through four phases:

1. structure: shape, step cap and allowed models, before any storage access
2. references: every ``$N.field`` must point at a strictly earlier step
3. preparation: authorization and validation of every step
4. execution: all steps in one transaction, resolving references from
   the append-only result log

Any failure in any phase leaves storage untouched.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lumina.config import NestedConfig
from lumina.errors import (
    BatchValidationFailed,
    Forbidden,
    LuminaError,
    RecordNotFound,
    ReferenceResolutionFailed,
    StorageFailure,
    TenantNotFound,
    ValidationFailed,
)
from lumina.nested.references import Reference, ResultLog, UnresolvedReference, find_references
from lumina.registry.types import ModelDescriptor
from lumina.services.context import RequestContext
from lumina.services.resources import ConnectionLookup, ResourceService
from lumina.validation.checks import RecordLookup

logger = logging.getLogger(__name__)

# Batch action -> resource action
NESTED_ACTIONS = {"create": "store", "update": "update", "delete": "destroy"}

_MISSING = object()


@dataclass
class NestedOperation:
    index: int
    action: str
    model: str
    id: Any = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def resource_action(self) -> str:
        return NESTED_ACTIONS[self.action]

    @property
    def path(self) -> str:
        return f"operations.{self.index}"


@dataclass
class PlannedStep:
    operation: NestedOperation
    descriptor: ModelDescriptor
    references: dict[str, Reference]
    entity: dict[str, Any] | None = None
    values: dict[str, Any] = field(default_factory=dict)
    rules: dict[str, str] = field(default_factory=dict)

    @property
    def deferred(self) -> set[str]:
        return {loc.split(".", 1)[1] for loc in self.references if loc.startswith("data.")}

    def keep_ruled_references(self) -> None:
        """Forget data references to fields outside the resolved rules; those fields are dropped."""
        self.references = {
            loc: ref
            for loc, ref in self.references.items()
            if not loc.startswith("data.") or loc.split(".", 1)[1] in self.rules
        }


class BatchLookup:
    """``exists``/``unique`` lookups that also see values claimed by earlier steps."""

    def __init__(self, lookup: RecordLookup, earlier: list[PlannedStep]):
        self.lookup = lookup
        self.earlier = earlier

    def value_exists(self, table, column, value, *, ignore=None) -> bool:
        if self.lookup.value_exists(table, column, value, ignore=ignore):
            return True
        for step in self.earlier:
            if step.descriptor.table != table or step.values.get(column, _MISSING) != value:
                continue
            if ignore is not None and step.entity is not None and step.entity.get(ignore[0]) == ignore[1]:
                continue
            return True
        return False


class NestedExecutor:
    def __init__(self, service: ResourceService, config: NestedConfig):
        self.service = service
        self.config = config

    def execute(self, ctx: RequestContext, operations: Any) -> list[dict[str, Any]]:
        """Run a batch and return one result per step, in step order.

        Raises:
            BatchValidationFailed: Malformed batch or per-step validation errors
            ReferenceResolutionFailed: A reference is forward, self or dangling
            Forbidden: One or more steps are not authorized (per-step list)
            StorageFailure: The storage engine rejected a step
        """
        steps = self.parse(operations)
        self.check_references(steps)
        with self.service.db.transaction() as conn:
            self.prepare(conn, ctx, steps)
            results = self.run(conn, ctx, steps)
        logger.info("Nested batch of %d operations committed", len(results))
        return results

    # ------------------------------------------------------------------
    # Phase 1: structure
    # ------------------------------------------------------------------

    def parse(self, operations: Any) -> list[PlannedStep]:
        if not isinstance(operations, list):
            raise BatchValidationFailed({"operations": ["The operations field must be an array."]})
        if not operations:
            raise BatchValidationFailed({"operations": ["The operations field is required."]})
        if len(operations) > self.config.max_operations:
            raise BatchValidationFailed({
                "operations": [
                    f"The operations field must not have more than {self.config.max_operations} items."
                ]
            })

        allowed = set(self.config.allowed_models) if self.config.allowed_models is not None else None
        errors: dict[str, list[str]] = {}
        steps: list[PlannedStep] = []
        for index, raw in enumerate(operations):
            prefix = f"operations.{index}"
            if not isinstance(raw, dict):
                errors[prefix] = ["Each operation must be an object."]
                continue

            action = raw.get("action")
            if action not in NESTED_ACTIONS:
                errors[f"{prefix}.action"] = ["The action must be one of: create, update, delete."]

            model = raw.get("model")
            descriptor = self.service.registry.get(model) if isinstance(model, str) else None
            if not model:
                errors[f"{prefix}.model"] = ["The model field is required."]
            elif allowed is not None and model not in allowed:
                errors[f"{prefix}.model"] = ["The model is not allowed in nested operations."]
            elif descriptor is None or (
                action in NESTED_ACTIONS and not descriptor.supports(NESTED_ACTIONS[action])
            ):
                errors[f"{prefix}.model"] = ["The selected model is invalid."]

            record_id = raw.get("id")
            if action in ("update", "delete") and record_id in (None, ""):
                errors[f"{prefix}.id"] = ["The id field is required for update and delete operations."]

            data = raw.get("data") or {}
            if not isinstance(data, dict):
                errors[f"{prefix}.data"] = ["The data field must be an object."]

            if any(key.startswith(prefix + ".") or key == prefix for key in errors):
                continue
            operation = NestedOperation(index, action, model, record_id, data)
            steps.append(PlannedStep(operation, descriptor, find_references(record_id, data)))

        if errors:
            raise BatchValidationFailed(errors)
        return steps

    # ------------------------------------------------------------------
    # Phase 2: references
    # ------------------------------------------------------------------

    def check_references(self, steps: list[PlannedStep]) -> None:
        errors = {}
        for step in steps:
            for location, ref in step.references.items():
                if ref.step >= step.operation.index:
                    errors[f"{step.operation.path}.{location}"] = [
                        f"Reference '{ref}' must point to an earlier operation."
                    ]
        if errors:
            raise ReferenceResolutionFailed(errors)

    # ------------------------------------------------------------------
    # Phase 3: authorization and validation
    # ------------------------------------------------------------------

    def prepare(self, conn: Connection, ctx: RequestContext, steps: list[PlannedStep]) -> None:
        service = self.service
        service.tenant(conn, ctx)

        forbidden: dict[str, list[str]] = {}
        invalid: dict[str, list[str]] = {}
        for position, step in enumerate(steps):
            op, descriptor = step.operation, step.descriptor
            action = op.resource_action
            try:
                service.gate(conn, ctx, descriptor, action)
                if action in ("update", "destroy") and "id" not in step.references:
                    step.entity = service.find_in_scope(conn, ctx, descriptor, op.id)
                    service.authorize_entity(ctx, descriptor, action, step.entity)
                if action != "destroy":
                    step.rules = service.engine.resolve_rules(descriptor, action, ctx.tenant.role_slug)
                step.keep_ruled_references()
                # Values claimed by earlier steps count for unique/exists
                lookup = BatchLookup(ConnectionLookup(service.db, conn), steps[:position])
                if action == "store":
                    step.values = service.prepare_store(
                        conn, ctx, descriptor, op.data, step.deferred, lookup=lookup
                    )
                elif action == "update":
                    step.values = service.prepare_update(
                        conn, ctx, descriptor, step.entity, op.data, step.deferred, lookup=lookup
                    )
            except TenantNotFound:
                raise
            except Forbidden as exc:
                forbidden[op.path] = [exc.message]
            except RecordNotFound:
                invalid[f"{op.path}.id"] = ["The selected id is invalid."]
            except ValidationFailed as exc:
                for name, messages in exc.errors.items():
                    invalid[f"{op.path}.data.{name}"] = messages

        if forbidden:
            raise Forbidden("One or more operations are unauthorized.", errors=forbidden)
        if invalid:
            raise BatchValidationFailed(invalid)

    # ------------------------------------------------------------------
    # Phase 4: execution
    # ------------------------------------------------------------------

    def run(self, conn: Connection, ctx: RequestContext, steps: list[PlannedStep]) -> list[dict[str, Any]]:
        service = self.service
        serializer = service.serializer(ctx)
        log = ResultLog()

        for step in steps:
            op, descriptor = step.operation, step.descriptor
            resolved = self._resolve(step, log)
            try:
                row = self._apply(conn, ctx, step, resolved)
            except ValidationFailed as exc:
                raise BatchValidationFailed(
                    {f"{op.path}.data.{name}": msgs for name, msgs in exc.errors.items()}
                ) from exc
            except LuminaError as exc:
                exc.extra.setdefault("step", op.index)
                raise
            except SQLAlchemyError as exc:
                logger.warning("Nested operation %d failed: %s", op.index, exc)
                if isinstance(exc, IntegrityError):
                    raise StorageFailure(
                        "The operation violates a data constraint.", constraint=True, step=op.index
                    ) from exc
                raise StorageFailure(
                    "The storage engine failed to complete the operation.", step=op.index
                ) from exc

            log.append({
                "action": op.action,
                "model": op.model,
                "id": row[descriptor.primary_key],
                "data": serializer.serialize(descriptor, row),
            })
        return log.results

    def _resolve(self, step: PlannedStep, log: ResultLog) -> dict[str, Any]:
        resolved = {}
        for location, ref in step.references.items():
            try:
                resolved[location] = log.resolve(ref, step.operation.index)
            except UnresolvedReference as exc:
                raise ReferenceResolutionFailed(
                    {f"{step.operation.path}.{location}": [str(exc)]}
                ) from exc
        return resolved

    def _late_values(
        self, conn: Connection, step: PlannedStep, resolved: dict[str, Any], entity: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Check resolved reference values against the step's rules.

        Raises:
            ValidationFailed: A resolved value breaks its field's rules
        """
        data = {loc.split(".", 1)[1]: v for loc, v in resolved.items() if loc.startswith("data.")}
        if not data:
            return {}
        service = self.service
        descriptor = step.descriptor
        ignore = (descriptor.primary_key, entity[descriptor.primary_key]) if entity else None
        result = service.engine.check(
            {name: step.rules[name] for name in data},
            {**step.operation.data, **data},
            messages=descriptor.validation.messages,
            lookup=ConnectionLookup(service.db, conn),
            ignore=ignore,
        )
        if not result.valid:
            raise ValidationFailed(result.errors)
        return service.writable(descriptor, result.data)

    def _apply(
        self, conn: Connection, ctx: RequestContext, step: PlannedStep, resolved: dict[str, Any]
    ) -> dict[str, Any]:
        service = self.service
        op, descriptor = step.operation, step.descriptor
        action = op.resource_action

        entity = step.entity
        if action != "store" and entity is None:
            entity = service.find_in_scope(conn, ctx, descriptor, resolved["id"])
            service.authorize_entity(ctx, descriptor, action, entity)
        if action == "destroy":
            return service.perform_destroy(conn, ctx, descriptor, entity)

        late = self._late_values(conn, step, resolved, entity)
        values = {**step.values, **late}
        scope = service.scope(ctx)

        if action == "store":
            # Ownership comes from the active organization, never from a reference
            if late:
                scope.populate(conn, descriptor, values)
            return service.perform_store(conn, ctx, descriptor, values)

        if ctx.tenant and ctx.tenant.organization is not None:
            if descriptor.tenancy_mode == "direct":
                values.pop(descriptor.organization_key, None)
            owner_fk = service.owner_foreign_key(descriptor)
            if owner_fk in late:
                scope.check_parent(conn, descriptor, descriptor.owner_path[0], late[owner_fk])
        return service.perform_update(conn, ctx, descriptor, entity, values)
