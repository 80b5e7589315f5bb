"""Query compiler: allow-listed filters, sorts, search, includes and pagination."""

from lumina.query.compiler import CompiledQuery, Page, QueryCompiler
from lumina.query.directives import QueryDirectives
from lumina.query.includes import IncludeLoader, include_tree
from lumina.query.relations import RelationGraph
from lumina.query.serializer import RecordSerializer

__all__ = [
    "CompiledQuery",
    "IncludeLoader",
    "Page",
    "QueryCompiler",
    "QueryDirectives",
    "RecordSerializer",
    "RelationGraph",
    "include_tree",
]
