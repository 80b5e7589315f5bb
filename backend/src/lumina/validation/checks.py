"""Rule checks for pipe-separated rule strings.

Each rule name maps to a check function ``(value, params, ctx) -> bool``.
The built-in rules are registered at import; applications add their own
with the ``@rule("name")`` decorator before the registry loads.

Example:
    @rule("slug")
    def check_slug(value, params, ctx):
        return isinstance(value, str) and SLUG_PATTERN.match(value) is not None
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar, Protocol

from lumina.validation.rules import PRESENCE_MODIFIERS, RULE_SEPARATOR

# =============================================================================
# Format patterns
# =============================================================================

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
)

URL_PATTERN = re.compile(
    r"^https?://[^\s/$.?#].[^\s]*$",
    re.IGNORECASE
)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE
)

NUMERIC_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
INTEGER_PATTERN = re.compile(r"^-?\d+$")

# Rules whose parameter is a single raw string (may contain commas)
RAW_PARAM_RULES = frozenset({"regex", "not_regex", "date_format"})


# =============================================================================
# Parsing
# =============================================================================


@dataclass(frozen=True)
class ParsedRule:
    name: str
    params: tuple[str, ...] = ()

    @classmethod
    def parse(cls, token: str) -> "ParsedRule":
        name, _, raw = token.partition(":")
        name = name.strip()
        if not raw:
            return cls(name)
        if name in RAW_PARAM_RULES:
            return cls(name, (raw,))
        return cls(name, tuple(p.strip() for p in raw.split(",")))


def parse_rules(rule_string: str) -> list[ParsedRule]:
    return [ParsedRule.parse(t) for t in rule_string.split(RULE_SEPARATOR) if t.strip()]


class RecordLookup(Protocol):
    """Database access needed by ``exists`` and ``unique``."""

    def value_exists(
        self, table: str, column: str, value: Any, *, ignore: tuple[str, Any] | None = None
    ) -> bool: ...


@dataclass
class RuleContext:
    """Everything a check may need besides the value itself."""

    field: str
    payload: Mapping[str, Any]
    rules: list[ParsedRule] = field(default_factory=list)
    lookup: RecordLookup | None = None
    ignore: tuple[str, Any] | None = None

    @property
    def numeric(self) -> bool:
        return any(r.name in ("integer", "numeric") for r in self.rules)


RuleCheck = Callable[[Any, tuple[str, ...], RuleContext], bool]


class RuleRegistry:
    """Class-level registry of rule checks by name."""

    _rules: ClassVar[dict[str, RuleCheck]] = {}

    @classmethod
    def register(cls, name: str, check: RuleCheck) -> None:
        cls._rules[name] = check

    @classmethod
    def get(cls, name: str) -> RuleCheck:
        """Get a check by rule name.

        Raises:
            KeyError: If no rule with that name is registered
        """
        if name not in cls._rules:
            raise KeyError(f"Unknown validation rule '{name}'")
        return cls._rules[name]

    @classmethod
    def is_known(cls, name: str) -> bool:
        return name in cls._rules or name in PRESENCE_MODIFIERS

    @classmethod
    def names(cls) -> list[str]:
        return sorted(cls._rules)


def rule(name: str) -> Callable[[RuleCheck], RuleCheck]:
    def decorator(check: RuleCheck) -> RuleCheck:
        RuleRegistry.register(name, check)
        return check

    return decorator


def unknown_rules(rule_string: str) -> list[str]:
    return [r.name for r in parse_rules(rule_string) if not RuleRegistry.is_known(r.name)]


# =============================================================================
# Helpers
# =============================================================================


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and NUMERIC_PATTERN.match(value.strip()) is not None


def size_of(value: Any, ctx: RuleContext) -> float:
    """Size used by min/max/between/size.

    Numbers (or numeric strings under an integer/numeric rule) compare by
    value, strings by length, arrays and objects by item count.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        if ctx.numeric and is_numeric(value):
            return float(value)
        return len(value)
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return len(str(value))


def size_kind(value: Any, ctx: RuleContext) -> str:
    """Which message variant applies: numeric, string or array."""
    if isinstance(value, (list, tuple, dict)):
        return "array"
    if (isinstance(value, (int, float)) and not isinstance(value, bool)) or (
        ctx.numeric and is_numeric(value)
    ):
        return "numeric"
    return "string"


def _number(param: str) -> float:
    return float(param)


# =============================================================================
# Type rules
# =============================================================================


@rule("string")
def check_string(value, params, ctx):
    return isinstance(value, str)


@rule("integer")
def check_integer(value, params, ctx):
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, str) and INTEGER_PATTERN.match(value.strip()) is not None


@rule("numeric")
def check_numeric(value, params, ctx):
    return is_numeric(value)


@rule("boolean")
def check_boolean(value, params, ctx):
    return value in (True, False, 0, 1, "0", "1", "true", "false")


@rule("array")
def check_array(value, params, ctx):
    return isinstance(value, (list, dict))


@rule("json")
def check_json(value, params, ctx):
    return isinstance(value, (list, dict))


@rule("email")
def check_email(value, params, ctx):
    return isinstance(value, str) and EMAIL_PATTERN.match(value) is not None


@rule("url")
def check_url(value, params, ctx):
    return isinstance(value, str) and URL_PATTERN.match(value) is not None


@rule("uuid")
def check_uuid(value, params, ctx):
    return isinstance(value, str) and UUID_PATTERN.match(value) is not None


@rule("date")
def check_date(value, params, ctx):
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


@rule("alpha")
def check_alpha(value, params, ctx):
    return isinstance(value, str) and value.isalpha()


@rule("alpha_num")
def check_alpha_num(value, params, ctx):
    return isinstance(value, str) and value.isalnum()


@rule("alpha_dash")
def check_alpha_dash(value, params, ctx):
    return isinstance(value, str) and re.fullmatch(r"[\w-]+", value) is not None


# =============================================================================
# Size rules
# =============================================================================


@rule("min")
def check_min(value, params, ctx):
    return size_of(value, ctx) >= _number(params[0])


@rule("max")
def check_max(value, params, ctx):
    return size_of(value, ctx) <= _number(params[0])


@rule("between")
def check_between(value, params, ctx):
    return _number(params[0]) <= size_of(value, ctx) <= _number(params[1])


@rule("size")
def check_size(value, params, ctx):
    return size_of(value, ctx) == _number(params[0])


# =============================================================================
# Value rules
# =============================================================================


@rule("in")
def check_in(value, params, ctx):
    return str(value) in params if not isinstance(value, (list, dict)) else False


@rule("not_in")
def check_not_in(value, params, ctx):
    return not check_in(value, params, ctx)


@rule("regex")
def check_regex(value, params, ctx):
    return isinstance(value, str) and re.search(_pattern(params[0]), value) is not None


@rule("not_regex")
def check_not_regex(value, params, ctx):
    return isinstance(value, str) and re.search(_pattern(params[0]), value) is None


def _pattern(raw: str) -> str:
    # Accept both /pattern/ and bare pattern
    if len(raw) >= 2 and raw.startswith("/") and raw.endswith("/"):
        return raw[1:-1]
    return raw


@rule("confirmed")
def check_confirmed(value, params, ctx):
    return ctx.payload.get(f"{ctx.field}_confirmation") == value


@rule("same")
def check_same(value, params, ctx):
    return ctx.payload.get(params[0]) == value


@rule("different")
def check_different(value, params, ctx):
    return ctx.payload.get(params[0]) != value


# =============================================================================
# Database rules
# =============================================================================


@rule("exists")
def check_exists(value, params, ctx):
    """``exists:table[,column]``; column defaults to the field name."""
    if ctx.lookup is None:
        return True
    column = params[1] if len(params) > 1 else ctx.field
    return ctx.lookup.value_exists(params[0], column, value)


@rule("unique")
def check_unique(value, params, ctx):
    """``unique:table[,column]``; on update the current row is ignored."""
    if ctx.lookup is None:
        return True
    column = params[1] if len(params) > 1 else ctx.field
    return not ctx.lookup.value_exists(params[0], column, value, ignore=ctx.ignore)
