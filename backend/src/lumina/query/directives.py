"""Parse list/show query-string parameters into QueryDirectives.

Parsing never rejects anything: unknown or malformed parameters are simply
dropped. Allow-list enforcement happens in the compiler.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from lumina.registry.types import SortField

_BRACKET_PARAM = re.compile(r"^(filter|fields)\[([^\]]+)\]$")


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated parameter, dropping empty entries."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _positive_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number > 0 else None


@dataclass
class QueryDirectives:
    filters: dict[str, list[str]] = field(default_factory=dict)
    sort: list[SortField] = field(default_factory=list)
    search: str | None = None
    includes: list[str] = field(default_factory=list)
    fields: dict[str, list[str]] = field(default_factory=dict)
    page: int | None = None
    per_page: int | None = None

    @classmethod
    def from_query_params(cls, params: Iterable[tuple[str, str]]) -> "QueryDirectives":
        """Build directives from (key, value) pairs.

        Accepts ``request.query_params.multi_items()`` or any iterable of
        pairs. Repeated ``filter[x]`` parameters are merged.
        """
        directives = cls()
        for key, value in params:
            match = _BRACKET_PARAM.match(key)
            if match:
                kind, name = match.groups()
                target = directives.filters if kind == "filter" else directives.fields
                target.setdefault(name, []).extend(split_csv(value))
            elif key == "sort":
                directives.sort.extend(SortField.parse(token) for token in split_csv(value))
            elif key == "search":
                term = value.strip()
                directives.search = term or None
            elif key == "include":
                directives.includes.extend(split_csv(value))
            elif key == "page":
                directives.page = _positive_int(value)
            elif key == "per_page":
                directives.per_page = _positive_int(value)
        return directives
