"""
Builds the form validation schema for one classification from its field descriptors.

The result is a ``FormSchema``: per-leaf coercion rules, per-collection item
rules and a JSON Schema document (Draft 2020-12) describing the coerced form
snapshot. It is derived purely from the descriptor list and never patched: a
new classification gets a new schema.

Descriptor names map to form paths as follows:

- ``weight_for_transportation``: top-level leaf;
- ``payment_description`` / ``payments_description``: leaf ``description`` of collection ``payments``;
- ``schedules.user_id``: leaf ``user_id`` of collection ``schedules``.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import copy

from .field_registry import FieldDescriptor
from .field_types import NUMERIC, STRING, get_field_type, resolve_type_tag
from .order_logging import create_logger
from .sanitize_text import sanitize_label

logger = create_logger('order_engine.schema_builder')

REQUIRED_MESSAGE = "{label} é obrigatório"
INVALID_MESSAGE = "{label}: valor inválido"

# longest prefix first
COLLECTION_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("payments_", "payments"),
    ("payment_", "payments"),
)

SERVICES = "services"
PAYMENTS = "payments"
SCHEDULES = "schedules"
ATTACHMENTS = "attachments"
KNOWN_COLLECTIONS: Tuple[str, ...] = (SERVICES, PAYMENTS, SCHEDULES, ATTACHMENTS)


@dataclass(frozen=True)
class LeafRule:
    name: str
    label: str
    tag: str
    required: bool = False
    # strict leaves report unparseable non-empty input instead of dropping it
    strict: bool = False

    def coerce(self, value: Any) -> Any:
        return get_field_type(self.tag).parse(value)

    def required_message(self) -> str:
        return REQUIRED_MESSAGE.format(label=self.label)

    def invalid_message(self) -> str:
        return INVALID_MESSAGE.format(label=self.label)

    def json_schema(self) -> Dict[str, Any]:
        node = dict(get_field_type(self.tag).json_schema())
        if self.required and self.tag == STRING:
            node["minLength"] = 1
        return node


@dataclass(frozen=True)
class CollectionRule:
    name: str
    leaves: Mapping[str, LeafRule] = field(default_factory=dict)

    def item_json_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {name: leaf.json_schema() for name, leaf in self.leaves.items()},
            "required": [name for name, leaf in self.leaves.items() if leaf.required],
        }

    def json_schema(self) -> Dict[str, Any]:
        return {"type": "array", "items": self.item_json_schema(), "default": []}


class FormSchema:
    """Immutable view over the rules built for one descriptor list."""

    def __init__(self, leaves: Dict[str, LeafRule], collections: Dict[str, CollectionRule]):
        self.__leaves = MappingProxyType(dict(leaves))
        self.__collections = MappingProxyType(dict(collections))
        self.__json_schema = self.__build_json_schema()

    @property
    def leaves(self) -> Mapping[str, LeafRule]:
        return self.__leaves

    @property
    def collections(self) -> Mapping[str, CollectionRule]:
        return self.__collections

    @property
    def json_schema(self) -> Dict[str, Any]:
        # callers get a copy, the schema itself is never mutated
        return copy.deepcopy(self.__json_schema)

    def leaf_for(self, path: str) -> Optional[LeafRule]:
        """Rule for ``leaf`` or ``collection.<index>.leaf`` paths."""
        parts = path.split(".")
        if len(parts) == 1:
            return self.__leaves.get(parts[0])
        collection = self.__collections.get(parts[0])
        if collection is None:
            return None
        return collection.leaves.get(parts[-1])

    def __build_json_schema(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {name: leaf.json_schema() for name, leaf in self.__leaves.items()}
        for name, collection in self.__collections.items():
            properties[name] = collection.json_schema()
        return {
            "$schema": "https://json-schema.org/draft/2020-12/schema",
            "type": "object",
            "properties": properties,
            "required": [name for name, leaf in self.__leaves.items() if leaf.required],
        }


def builtin_collection_rules() -> Dict[str, CollectionRule]:
    """Item rules that exist for every classification."""
    services = CollectionRule(SERVICES, MappingProxyType({
        "service_id": LeafRule("service_id", "Serviço", STRING, required=True),
        "unit_price": LeafRule("unit_price", "Valor unitário", NUMERIC, strict=True),
        "quantity": LeafRule("quantity", "Quantidade", NUMERIC, strict=True),
        "total_price": LeafRule("total_price", "Valor total", NUMERIC, strict=True),
        "scope": LeafRule("scope", "Escopo", STRING),
    }))
    return {SERVICES: services}


def split_collection_name(name: str, prefixes: Iterable[Tuple[str, str]] = COLLECTION_PREFIXES) -> Tuple[Optional[str], str]:
    """Return ``(collection, leaf)``; collection is None for top-level fields."""
    if "." in name:
        collection, leaf = name.split(".", 1)
        if collection and leaf:
            return collection, leaf
    for prefix, collection in prefixes:
        if name.startswith(prefix) and len(name) > len(prefix):
            return collection, name[len(prefix):]
    return None, name


def build_leaf_rule(descriptor: FieldDescriptor, leaf_name: str) -> LeafRule:
    return LeafRule(
        name=leaf_name,
        label=sanitize_label(descriptor.display_label()),
        tag=resolve_type_tag(descriptor.field_type),
        required=descriptor.required,
    )


def build_form_schema(descriptors: List[FieldDescriptor],
                      prefixes: Iterable[Tuple[str, str]] = COLLECTION_PREFIXES) -> Tuple[FormSchema, Dict[str, Any]]:
    """Descriptor list -> (schema, defaults). Pure function of its input."""
    prefixes = tuple(prefixes)
    leaves: Dict[str, LeafRule] = {}
    grouped: Dict[str, Dict[str, LeafRule]] = {}
    defaults: Dict[str, Any] = {}

    for descriptor in descriptors:
        if not descriptor.visible:
            continue
        collection, leaf_name = split_collection_name(descriptor.name, prefixes)
        rule = build_leaf_rule(descriptor, leaf_name)
        if collection is None:
            leaves[leaf_name] = rule
            if descriptor.has_default():
                defaults[leaf_name] = descriptor.default_value
        else:
            grouped.setdefault(collection, {})[leaf_name] = rule

    collections = builtin_collection_rules()
    for collection, item_leaves in grouped.items():
        merged = dict(collections[collection].leaves) if collection in collections else {}
        merged.update(item_leaves)
        collections[collection] = CollectionRule(collection, MappingProxyType(merged))

    # a top-level leaf never shadows a collection
    for collection in collections:
        if collection in leaves:
            logger.warning(f"Descriptor '{collection}' collides with a collection name and is ignored")
            leaves.pop(collection)
            defaults.pop(collection, None)

    logger.debug(f"Built form schema: {len(leaves)} leaves, collections {sorted(collections)}")
    return FormSchema(leaves, collections), defaults
