"""
Related-entity resolution for id-valued fields.

Form fields such as ``service_id`` or ``document_type_id`` hold ids, while the
operator needs to see names. ``EntityCache`` is the shared store of full
objects, keyed by ``(kind, id)``; ``EntityResolver`` resolves one kind of
entity through the fallback chain:

    object value -> recent suggestions -> shared cache -> lookup ``get`` -> raw id
"""

from typing import Any, Dict, List, Optional, Tuple
import threading

from .errors import ApiError
from .order_logging import create_logger

logger = create_logger('order_engine.entity_cache')


class EntityCache:
    """Thread-safe ``(kind, id) -> object`` store. Upserts are idempotent."""

    def __init__(self):
        self.__entities: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.__lock = threading.Lock()

    def upsert(self, kind: str, entity: Any, entity_id: Any = None) -> bool:
        if not isinstance(entity, dict):
            return False
        entity_id = entity_id if entity_id is not None else entity.get('id')
        if entity_id is None or entity_id == '':
            return False
        with self.__lock:
            self.__entities[(kind, str(entity_id))] = entity
        return True

    def upsert_many(self, kind: str, entities: List[Any]) -> int:
        return sum(1 for entity in entities if self.upsert(kind, entity))

    def get(self, kind: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        with self.__lock:
            return self.__entities.get((kind, str(entity_id)))

    def __contains__(self, key: Tuple[str, str]) -> bool:
        kind, entity_id = key
        return self.get(kind, entity_id) is not None

    def __len__(self) -> int:
        with self.__lock:
            return len(self.__entities)


class EntityResolver:

    def __init__(self, kind: str, cache: EntityCache, lookup=None):
        """``lookup`` is optional and needs ``list(filters)`` and ``get(id)``."""
        self.kind = kind
        self.cache = cache
        self.lookup = lookup
        self.suggestions: List[Dict[str, Any]] = []

    def resolve(self, value: Any) -> Any:
        """Display object for a field value, or the raw value when nothing knows the id."""
        if isinstance(value, dict):
            return value
        entity_id = '' if value is None else str(value)
        if not entity_id:
            return value

        for suggestion in self.suggestions:
            if str(suggestion.get('id')) == entity_id:
                return suggestion

        cached = self.cache.get(self.kind, entity_id)
        if cached is not None:
            return cached

        if self.lookup is not None:
            try:
                entity = self.lookup.get(entity_id)
            except ApiError as e:
                logger.warning(f'{self.kind} lookup for id {entity_id} failed: {e}')
                entity = None
            if isinstance(entity, dict):
                self.cache.upsert(self.kind, entity, entity_id)
                return entity
        return value

    def search(self, query: str, key: str = 'name') -> List[Dict[str, Any]]:
        """Refresh suggestions from the lookup collaborator; every hit is cached."""
        if self.lookup is None:
            return []
        results = [r for r in self.lookup.list({key: query}) if isinstance(r, dict)]
        self.suggestions = results
        self.cache.upsert_many(self.kind, results)
        return results

    def select(self, value: Any) -> Optional[str]:
        """Value to store in the form when the operator picks ``value``."""
        if isinstance(value, dict) and 'id' in value:
            self.cache.upsert(self.kind, value)
            return str(value['id'])
        text = '' if value is None else str(value)
        return text or None
