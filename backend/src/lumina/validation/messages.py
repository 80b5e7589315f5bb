"""Default validation messages.

Placeholders: ``:attribute`` (field name, underscores as spaces) plus
rule parameters (``:min``, ``:max``, ``:size``, ``:values``, ``:other``).
Size rules have numeric, string and array variants.
"""

from collections.abc import Mapping

DEFAULT_MESSAGES = {
    "required": "The :attribute field is required.",
    "string": "The :attribute field must be a string.",
    "integer": "The :attribute field must be an integer.",
    "numeric": "The :attribute field must be a number.",
    "boolean": "The :attribute field must be true or false.",
    "array": "The :attribute field must be an array.",
    "json": "The :attribute field must be a valid JSON value.",
    "email": "The :attribute field must be a valid email address.",
    "url": "The :attribute field must be a valid URL.",
    "uuid": "The :attribute field must be a valid UUID.",
    "date": "The :attribute field must be a valid date.",
    "alpha": "The :attribute field must only contain letters.",
    "alpha_num": "The :attribute field must only contain letters and numbers.",
    "alpha_dash": "The :attribute field must only contain letters, numbers, dashes, and underscores.",
    "min.numeric": "The :attribute field must be at least :min.",
    "min.string": "The :attribute field must be at least :min characters.",
    "min.array": "The :attribute field must have at least :min items.",
    "max.numeric": "The :attribute field must not be greater than :max.",
    "max.string": "The :attribute field must not be greater than :max characters.",
    "max.array": "The :attribute field must not have more than :max items.",
    "between.numeric": "The :attribute field must be between :min and :max.",
    "between.string": "The :attribute field must be between :min and :max characters.",
    "between.array": "The :attribute field must have between :min and :max items.",
    "size.numeric": "The :attribute field must be :size.",
    "size.string": "The :attribute field must be :size characters.",
    "size.array": "The :attribute field must contain :size items.",
    "in": "The selected :attribute is invalid.",
    "not_in": "The selected :attribute is invalid.",
    "regex": "The :attribute field format is invalid.",
    "not_regex": "The :attribute field format is invalid.",
    "confirmed": "The :attribute field confirmation does not match.",
    "same": "The :attribute field must match :other.",
    "different": "The :attribute field and :other must be different.",
    "exists": "The selected :attribute is invalid.",
    "unique": "The :attribute has already been taken.",
}

FALLBACK_MESSAGE = "The :attribute field is invalid."

SIZE_RULES = frozenset({"min", "max", "between", "size"})

_PARAM_NAMES = {
    "min": ("min",),
    "max": ("max",),
    "between": ("min", "max"),
    "size": ("size",),
    "same": ("other",),
    "different": ("other",),
}


def _format_number(param: str) -> str:
    try:
        number = float(param)
    except ValueError:
        return param
    return str(int(number)) if number.is_integer() else param


def render_message(
    field: str,
    rule: str,
    params: tuple[str, ...],
    custom: Mapping[str, str] | None = None,
    kind: str = "string",
) -> str:
    """Render the message for a failed rule.

    Custom messages are looked up as ``field.rule``, then ``rule``.
    """
    custom = custom or {}
    template = custom.get(f"{field}.{rule}") or custom.get(rule)
    if template is None:
        key = f"{rule}.{kind}" if rule in SIZE_RULES else rule
        template = DEFAULT_MESSAGES.get(key, FALLBACK_MESSAGE)

    replacements = {"attribute": field.replace("_", " ")}
    for name, value in zip(_PARAM_NAMES.get(rule, ()), params):
        replacements[name] = _format_number(value) if rule in SIZE_RULES else value.replace("_", " ")
    replacements["values"] = ", ".join(params)

    # Longest placeholder first so :max is not clobbered by a shorter name
    for name in sorted(replacements, key=len, reverse=True):
        template = template.replace(f":{name}", replacements[name])
    return template
