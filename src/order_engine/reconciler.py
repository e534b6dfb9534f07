"""
Collection reconciler: moves the nested line collections between the server
record shape and the form shape, and removes lines in a safe order.

Server -> form (seeding) flattens embedded related entities into foreign key
leaves and fills monetary/quantity defaults. Form -> server recomputes every
line total from its unit price and floored quantity.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .date_utils import format_wire_date
from .entity_cache import EntityCache
from .errors import ApiError, DeletionError
from .form_state import FormState
from .number_utils import floor_quantity, format_money, line_total, parse_number_universal
from .order_logging import create_logger
from .schema_builder import PAYMENTS, SCHEDULES, SERVICES

logger = create_logger('order_engine.reconciler')

ZERO_MONEY = "0.00"
ZERO_QUANTITY = "0"


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    fields: Tuple[str, ...]
    # embedded object key -> (foreign key leaf, entity kind)
    embedded: Mapping[str, Tuple[str, str]] = field(default_factory=dict)
    money_fields: Tuple[str, ...] = ()
    quantity_field: Optional[str] = None
    date_fields: Tuple[str, ...] = ()
    # lines with their own server id, deleted one by one
    identified: bool = True

    @property
    def foreign_keys(self) -> Tuple[str, ...]:
        return tuple(fk for fk, _ in self.embedded.values())

    @property
    def priced(self) -> bool:
        return "total_price" in self.money_fields and self.quantity_field is not None


SERVICE_LINE = CollectionSpec(
    name=SERVICES,
    fields=("service_id", "unit_price", "quantity", "total_price", "scope"),
    embedded={"service": ("service_id", "service")},
    money_fields=("unit_price", "total_price"),
    quantity_field="quantity",
    identified=False,
)

PAYMENT_LINE = CollectionSpec(
    name=PAYMENTS,
    fields=("description", "document_type_id", "document_number", "unit_price", "quantity", "total_price"),
    embedded={"document_type": ("document_type_id", "document_type")},
    money_fields=("unit_price", "total_price"),
    quantity_field="quantity",
)

SCHEDULE_LINE = CollectionSpec(
    name=SCHEDULES,
    fields=("user_id", "date"),
    embedded={"user": ("user_id", "user")},
    date_fields=("date",),
)

LINE_SPECS: Dict[str, CollectionSpec] = {spec.name: spec for spec in (SERVICE_LINE, PAYMENT_LINE, SCHEDULE_LINE)}


def _as_text_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)) and value != "":
        return str(value)
    return None


def _is_scalar_number(value: Any) -> bool:
    return isinstance(value, (str, int, float, Decimal)) and not isinstance(value, bool)


# ----------------------------- Server -> form -----------------------------

def to_form_item(spec: CollectionSpec, source: Any, cache: EntityCache = None) -> Dict[str, Any]:
    src = source if isinstance(source, dict) else {}
    item: Dict[str, Any] = {}
    line_id = _as_text_id(src.get("id")) if spec.identified else None
    if line_id is not None:
        item["id"] = line_id

    fk_fields = {fk: (key, kind) for key, (fk, kind) in spec.embedded.items()}
    for name in spec.fields:
        value = src.get(name)
        if name in fk_fields:
            embedded_key, kind = fk_fields[name]
            embedded = src.get(embedded_key)
            fk = _as_text_id(value)
            if fk is None and isinstance(embedded, dict):
                fk = _as_text_id(embedded.get("id"))
            if cache is not None and isinstance(embedded, dict):
                cache.upsert(kind, embedded, fk)
            item[name] = fk
        elif name in spec.money_fields:
            item[name] = str(value) if _is_scalar_number(value) else ZERO_MONEY
        elif name == spec.quantity_field:
            item[name] = str(value) if _is_scalar_number(value) else ZERO_QUANTITY
        elif name in spec.date_fields:
            item[name] = value if value else None
        else:
            item[name] = value if isinstance(value, str) else ""

    attachments = src.get("attachments")
    if isinstance(attachments, list):
        item["attachments"] = [dict(a) for a in attachments if isinstance(a, dict)]
    return item


def seed_collection(form_state: FormState, spec: CollectionSpec, source: Any, cache: EntityCache = None) -> int:
    """Fill an empty form collection from the server list. No-op when the collection has items."""
    if form_state.items(spec.name):
        logger.debug(f"Skip seeding {spec.name}: collection already has items")
        return 0
    if not isinstance(source, list) or not source:
        return 0
    items = [to_form_item(spec, src, cache) for src in source]
    form_state.replace_items(spec.name, items)
    logger.info(f"Seeded {len(items)} {spec.name} line(s) from server record")
    return len(items)


def seed_from_record(form_state: FormState, record: Mapping[str, Any], cache: EntityCache = None) -> Dict[str, int]:
    return {name: seed_collection(form_state, spec, record.get(name), cache) for name, spec in LINE_SPECS.items()}


# ----------------------------- Form -> server -----------------------------

def outgoing_attachments(attachments: Any) -> List[Dict[str, Any]]:
    """Only new (id-less) attachments are sent; local file handles never are."""
    if not isinstance(attachments, list):
        return []
    return [{k: v for k, v in a.items() if k != "fileObject"}
            for a in attachments if isinstance(a, dict) and not a.get("id")]


def to_wire_item(spec: CollectionSpec, item: Mapping[str, Any]) -> Dict[str, Any]:
    wire: Dict[str, Any] = {}
    if spec.identified and item.get("id"):
        wire["id"] = item["id"]
    for name in spec.fields:
        value = item.get(name)
        if name in spec.date_fields:
            wire[name] = format_wire_date(value) if value else None
        elif name in spec.foreign_keys:
            wire[name] = _as_text_id(value) if not isinstance(value, dict) else _as_text_id(value.get("id"))
        elif name in spec.money_fields or name == spec.quantity_field:
            continue
        else:
            wire[name] = value if value is not None else ""

    if spec.quantity_field is not None:
        wire[spec.quantity_field] = str(floor_quantity(item.get(spec.quantity_field)))
    for name in spec.money_fields:
        wire[name] = format_money(item.get(name))
    if spec.priced:
        wire["total_price"] = line_total(item.get("unit_price"), item.get(spec.quantity_field))

    if "attachments" in item:
        wire["attachments"] = outgoing_attachments(item.get("attachments"))
    return wire


def to_wire_collection(spec: CollectionSpec, items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [to_wire_item(spec, item) for item in items if isinstance(item, dict)]


def grand_total(items: Any) -> str:
    """Sum of the lines' recomputed totals, as money."""
    total = Decimal(0)
    for item in items or []:
        if not isinstance(item, dict):
            continue
        total += parse_number_universal(line_total(item.get("unit_price"), item.get("quantity"))) or Decimal(0)
    return format_money(total)


# ----------------------------- Line removal -----------------------------

class LineRemover:
    """Removes lines from the form, deleting identified lines remotely first.

    ``deleters`` maps a collection name to a ``delete(id)`` callable, see
    ``OrderApi.line_deleters``.
    """

    def __init__(self, deleters: Mapping[str, Callable[[str], Any]] = None):
        self.deleters = dict(deleters or {})

    def delete_remote(self, collection: str, line: Any) -> bool:
        """Delete an identified line remotely.

        Returns False when there is nothing to delete remotely: the line has
        no id, or the collection is sent back whole with the parent record.
        """
        line_id = line.get("id") if isinstance(line, dict) else None
        if not line_id:
            return False
        delete = self.deleters.get(collection)
        if delete is None:
            logger.debug(f"No remote delete for {collection}, removing line {line_id} locally")
            return False
        try:
            delete(line_id)
        except ApiError as e:
            logger.error(f"Failed to delete {collection} line {line_id}: {e}")
            raise DeletionError(f"Could not delete {collection} line {line_id}: {e}", item_id=line_id) from e
        logger.info(f"Deleted {collection} line {line_id} remotely")
        return True

    def remove_line(self, form_state: FormState, collection: str, index: int) -> Dict[str, Any]:
        items = form_state.items(collection)
        if index < 0 or index >= len(items):
            raise IndexError(f"No {collection} line at index {index}")
        self.delete_remote(collection, items[index])
        return form_state.remove(collection, index)
