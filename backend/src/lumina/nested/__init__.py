"""Nested operations: atomic multi-step batches with cross-step references."""

from lumina.nested.executor import NestedExecutor, NestedOperation
from lumina.nested.references import Reference, ResultLog

__all__ = ["NestedExecutor", "NestedOperation", "Reference", "ResultLog"]
