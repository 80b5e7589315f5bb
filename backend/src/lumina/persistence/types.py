"""Field type -> storage type mapping and value coercion."""

import json
from datetime import date, datetime
from typing import Any

import sqlalchemy as sa

# Dates and datetimes are stored as ISO-8601 text so rows stay JSON-ready
COLUMN_TYPES: dict[str, Any] = {
    "string": lambda: sa.String(255),
    "text": sa.Text,
    "integer": sa.Integer,
    "float": sa.Float,
    "boolean": sa.Boolean,
    "date": lambda: sa.String(10),
    "datetime": lambda: sa.String(32),
    "json": sa.JSON,
    "uuid": lambda: sa.String(36),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def column_type(field_type: str) -> sa.types.TypeEngine:
    """Get a SQLAlchemy column type for a field type (defaults to TEXT)."""
    factory = COLUMN_TYPES.get(field_type, sa.Text)
    return factory()


def coerce_value(field_type: str, value: Any) -> Any:
    """Coerce a request value to the Python type its column stores.

    Values that cannot be coerced are returned unchanged; the validation
    layer is responsible for rejecting them.
    """
    if value is None:
        return None
    try:
        if field_type == "integer":
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, str):
                return int(value.strip())
            if isinstance(value, float) and value.is_integer():
                return int(value)
        elif field_type == "float":
            if isinstance(value, str):
                return float(value.strip())
            if isinstance(value, int) and not isinstance(value, bool):
                return float(value)
        elif field_type == "boolean":
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE:
                    return True
                if lowered in _FALSE:
                    return False
            elif isinstance(value, int):
                return bool(value)
        elif field_type == "datetime":
            if isinstance(value, datetime):
                return value.isoformat()
        elif field_type == "date":
            if isinstance(value, (date, datetime)):
                return value.isoformat()[:10]
        elif field_type == "json":
            if isinstance(value, str):
                return json.loads(value)
        elif field_type in ("string", "text", "uuid"):
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return str(value)
    except (ValueError, TypeError):
        return value
    return value
