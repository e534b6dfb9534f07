"""
Turns a validated form snapshot into the order payload and persists it.
"""

from datetime import date
from typing import Any, Dict, Mapping, Optional

from .date_utils import format_wire_date, format_wire_datetime
from .errors import ApiError, PersistenceError
from .field_types import DATE, format_value
from .number_utils import format_money, to_finite_number
from .order_logging import create_logger
from .reconciler import LINE_SPECS, to_wire_collection
from .schema_builder import ATTACHMENTS, KNOWN_COLLECTIONS

logger = create_logger('order_engine.submission')

# server managed, never sent back
READ_ONLY_FIELDS = ('id', 'created_at', 'updated_at', 'deleted_at')
CLASSIFICATION_FIELD = 'service_type_id'
MEASURE_WORDS = ('weight', 'volume')
_OMIT = object()


def is_measure_field(name: str) -> bool:
    parts = name.split('_')
    # foreign keys such as weight_type_id are ids, not quantities
    if parts[-1] in ('id', 'ids'):
        return False
    return any(word in parts for word in MEASURE_WORDS)


def _is_empty(value: Any) -> bool:
    return value is None or value == ''


def normalize_leaf(name: str, value: Any) -> Any:
    """Wire form of one top-level leaf. Returns ``_OMIT`` when the leaf must not be sent."""
    if name.endswith('_date'):
        return value if _is_empty(value) else format_wire_date(value)
    if name.endswith('_at'):
        return value if _is_empty(value) else format_wire_datetime(value)
    if name.startswith('num_'):
        number = None if _is_empty(value) else to_finite_number(value)
        return _OMIT if number is None else number
    if is_measure_field(name):
        return None if _is_empty(value) else format_money(value)
    if isinstance(value, date):
        return format_value(DATE, value)
    return value


def strip_local_files(attachments: Any):
    if not isinstance(attachments, list):
        return []
    return [{k: v for k, v in a.items() if k != 'fileObject'} for a in attachments if isinstance(a, dict)]


class SubmissionNormalizer:

    def normalize(self, cleaned: Mapping[str, Any], classification_id: str,
                  live: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Build the create/update payload from the coerced snapshot.

        ``cleaned`` is the validator output; ``live`` is the current form
        state, used as a fallback for the attachment list.
        """
        payload: Dict[str, Any] = {}
        for name, value in cleaned.items():
            if name in KNOWN_COLLECTIONS or name in READ_ONLY_FIELDS:
                continue
            # embedded related records (service_type, client, ...) are not leaves
            if isinstance(value, (list, dict)):
                continue
            leaf = normalize_leaf(name, value)
            if leaf is not _OMIT:
                payload[name] = leaf

        payload[CLASSIFICATION_FIELD] = classification_id

        for name, spec in LINE_SPECS.items():
            payload[name] = to_wire_collection(spec, cleaned.get(name))

        attachments = cleaned.get(ATTACHMENTS)
        if not isinstance(attachments, list) and live is not None:
            attachments = live.get(ATTACHMENTS)
        payload[ATTACHMENTS] = strip_local_files(attachments)

        logger.debug(f'Normalized payload keys: {sorted(payload)}')
        return payload


def _record_id(record: Any) -> Optional[str]:
    if isinstance(record, dict) and record.get('id') not in (None, ''):
        return str(record['id'])
    return None


class OrderPersister:
    """Create or update the parent record through the ``api`` collaborator."""

    def __init__(self, api):
        self.api = api

    def save(self, parent_id: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if parent_id:
                logger.info(f'Updating service order {parent_id}')
                record = self.api.update_order(parent_id, payload)
            else:
                logger.info('Creating service order')
                record = self.api.create_order(payload)
        except ApiError as e:
            raise PersistenceError(e.message, field_errors=e.field_errors(), status=e.status) from e
        if not isinstance(record, dict):
            record = {}
        if _record_id(record) is None and parent_id:
            record = {**record, 'id': parent_id}
        return record

    @staticmethod
    def record_id(record: Any) -> Optional[str]:
        return _record_id(record)
