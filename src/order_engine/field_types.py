"""
Field type dispatch table.

Each type tag owns three functions:

- ``parse``: coerce a raw form value into the typed leaf, ``None`` meaning "no value";
- ``json_schema``: the JSON Schema node describing the coerced leaf;
- ``format``: turn a coerced leaf into its wire representation.

Tags are resolved from the descriptor ``field_type`` hint by case-insensitive
substring match, in registration order. Anything unmatched falls into the
``string`` tag. Adding a type means registering a new tag, existing ones are
not edited.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
import math

from .date_utils import format_wire_date, parse_date
from .number_utils import parse_number_universal

NUMERIC = "numeric"
BOOLEAN = "boolean"
DATE = "date"
STRING = "string"

TRUE_TOKENS = ("true", "1")
FALSE_TOKENS = ("false", "0")


@dataclass(frozen=True)
class FieldType:
    tag: str
    matches: Callable[[str], bool]
    parse: Callable[[Any], Any]
    json_schema: Callable[[], Dict[str, Any]]
    format: Callable[[Any], Any]


# Ordered registry: the first matching tag wins
__field_type_registry: Dict[str, FieldType] = {}
__match_order: List[str] = []


def _register_field_type(tag: str, matches: Callable[[str], bool], json_schema: Callable[[], Dict[str, Any]],
                         format: Callable[[Any], Any]):
    """Decorator registering a parse function as the entry point of a type tag."""
    def decorator(parse: Callable[[Any], Any]):
        __field_type_registry[tag] = FieldType(tag=tag, matches=matches, parse=parse,
                                               json_schema=json_schema, format=format)
        if tag not in __match_order:
            __match_order.append(tag)
        return parse
    return decorator


def get_field_type(tag: str) -> FieldType:
    field_type = __field_type_registry.get(tag)
    if field_type is None:
        raise ValueError(f"Unknown field type tag '{tag}'")
    return field_type


def registered_tags() -> Tuple[str, ...]:
    return tuple(__match_order)


def resolve_type_tag(field_type_hint: Optional[str]) -> str:
    """Map a descriptor ``field_type`` to a registered tag. Unknown hints are strings."""
    hint = str(field_type_hint if field_type_hint is not None else STRING).lower()
    for tag in __match_order:
        if tag == STRING:
            continue
        if __field_type_registry[tag].matches(hint):
            return tag
    return STRING


# ----------------------------- Shared scalar rules -----------------------------

def stringify_scalar(value: Any) -> str:
    """String form of numbers and booleans.

    Used both by the string branch and by the snapshot normalization done
    before validation, so the two always agree.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value == int(value):
            return str(int(value))
        return repr(value)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


# ----------------------------- Numeric -----------------------------

def _numeric_matches(hint: str) -> bool:
    return ("int" in hint or hint == "number" or "float" in hint or "decimal" in hint
            or "numeric" in hint or "money" in hint)


def _plain_number(value: Decimal):
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@_register_field_type(NUMERIC, _numeric_matches, lambda: {"type": "number"}, lambda v: v)
def parse_numeric(value: Any) -> Any:
    if value is None or value == "":
        return None
    parsed = parse_number_universal(value)
    if parsed is None:
        return None
    return _plain_number(parsed)


# ----------------------------- Boolean -----------------------------

@_register_field_type(BOOLEAN, lambda hint: "bool" in hint, lambda: {"type": "boolean"}, lambda v: v)
def parse_boolean(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    token = stringify_scalar(value).strip().lower()
    if token in TRUE_TOKENS:
        return True
    if token in FALSE_TOKENS:
        return False
    return None


# ----------------------------- Date -----------------------------

@_register_field_type(DATE, lambda hint: "date" in hint or "time" in hint,
                      lambda: {"type": "datetime"}, format_wire_date)
def parse_date_value(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return parse_date(value)


# ----------------------------- String -----------------------------

@_register_field_type(STRING, lambda hint: True, lambda: {"type": "string"}, lambda v: v)
def parse_string(value: Any) -> Optional[str]:
    """Strings as-is; objects prefer ``name`` then ``id``; numbers and booleans stringified."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or _is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return stringify_scalar(value)
    if isinstance(value, dict):
        for key in ("name", "id"):
            candidate = value.get(key)
            if candidate is None or candidate == "":
                continue
            if isinstance(candidate, str):
                return candidate
            if isinstance(candidate, bool) or _is_number(candidate):
                return stringify_scalar(candidate)
        return None
    return None


def format_value(tag: str, value: Any) -> Any:
    if value is None:
        return None
    return get_field_type(tag).format(value)
