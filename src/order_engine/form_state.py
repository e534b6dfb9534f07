"""
Form state container.

Holds the live values of the order form, including the nested line
collections, plus the per-address error messages shown inline. Addresses are
dotted paths: ``weight_for_transportation`` or ``payments.0.unit_price``.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import copy
import re

from .order_logging import create_logger
from .schema_builder import KNOWN_COLLECTIONS

logger = create_logger('order_engine.form_state')

_ITEM_PATH_RX = re.compile(r"^(?P<collection>[^.]+)\.(?P<index>\d+)\.(?P<leaf>.+)$")


class FormState:

    def __init__(self, values: Dict[str, Any] = None):
        self.__values: Dict[str, Any] = {}
        self.__errors: Dict[str, str] = {}
        self.reset(values)

    # ----------------------------- Values -----------------------------

    def reset(self, values: Dict[str, Any] = None):
        """Replace every value. All known collections restart as empty lists unless given."""
        fresh: Dict[str, Any] = {name: [] for name in KNOWN_COLLECTIONS}
        fresh.update(copy.deepcopy(values or {}))
        self.__values = fresh
        self.__errors = {}

    def snapshot(self) -> Dict[str, Any]:
        # LocalFile contents are immutable bytes, so a deep copy stays cheap enough
        return copy.deepcopy(self.__values)

    def get(self, path: str, default: Any = None) -> Any:
        node: Any = self.__values
        for part in path.split('.'):
            if isinstance(node, list):
                if not part.isdigit() or int(part) >= len(node):
                    return default
                node = node[int(part)]
            elif isinstance(node, dict):
                if part not in node:
                    return default
                node = node[part]
            else:
                return default
        return node

    def set(self, path: str, value: Any):
        parts = path.split('.')
        node: Any = self.__values
        for part in parts[:-1]:
            if isinstance(node, list):
                node = node[int(part)]
            else:
                node = node.setdefault(part, {})
        last = parts[-1]
        if isinstance(node, list):
            node[int(last)] = value
        else:
            node[last] = value
        self.__errors.pop(path, None)

    def update(self, values: Mapping[str, Any]):
        for key, value in values.items():
            self.set(key, value)

    # ----------------------------- Collections -----------------------------

    def items(self, collection: str) -> List[Dict[str, Any]]:
        """The live list for ``collection``; created empty when missing."""
        items = self.__values.get(collection)
        if not isinstance(items, list):
            items = []
            self.__values[collection] = items
        return items

    def replace_items(self, collection: str, items: List[Dict[str, Any]]):
        self.__values[collection] = list(items)
        self.__drop_errors(f'{collection}.')

    def append(self, collection: str, item: Dict[str, Any]) -> int:
        items = self.items(collection)
        items.append(item)
        return len(items) - 1

    def remove(self, collection: str, index: int) -> Dict[str, Any]:
        items = self.items(collection)
        removed = items.pop(index)
        # item errors are positional, they no longer line up after a removal
        self.__drop_errors(f'{collection}.')
        return removed

    # ----------------------------- Errors -----------------------------

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self.__errors)

    def error_for(self, path: str) -> Optional[str]:
        return self.__errors.get(path)

    def set_error(self, path: str, message: str):
        self.__errors[path] = message

    def set_errors(self, errors: Mapping[str, str]):
        for path, message in errors.items():
            self.set_error(path, message)

    def clear_errors(self):
        self.__errors = {}

    def __drop_errors(self, prefix: str):
        self.__errors = {k: v for k, v in self.__errors.items() if not k.startswith(prefix)}


AddressTarget = Union[str, Callable[[int], str]]


class FieldAddressMap:
    """Translates wire field names (validation keys, server error keys) to form addresses.

    Targets are either a fixed address or a callable receiving the item index.
    Names without an entry are returned unchanged.
    """

    def __init__(self, table: Mapping[str, AddressTarget] = None):
        self.__table: Dict[str, AddressTarget] = dict(table or {})

    def register(self, wire_name: str, target: AddressTarget):
        self.__table[wire_name] = target

    def translate(self, wire_name: str, index: Optional[int] = None) -> str:
        target = self.__table.get(wire_name)
        if target is None:
            match = _ITEM_PATH_RX.match(wire_name)
            if match is None:
                return wire_name
            target = self.__table.get(f"{match.group('collection')}.{match.group('leaf')}")
            if target is None:
                return wire_name
            index = int(match.group('index'))
        if isinstance(target, str):
            return target
        return target(index if index is not None else 0)

    def translate_errors(self, errors: Mapping[str, Any]) -> Dict[str, str]:
        """Map ``{wire_name: message | [messages]}`` to ``{form_address: message}``."""
        translated: Dict[str, str] = {}
        for wire_name, message in errors.items():
            if isinstance(message, (list, tuple)):
                message = message[0] if message else ''
            translated[self.translate(wire_name)] = str(message)
        return translated
