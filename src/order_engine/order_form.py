"""
Classification session: the state machine driving one order form.

    UNSELECTED --select--> LOADING --descriptors--> READY(version)
                              ^                         |
                              +--------select-----------+

Every selection bumps ``version`` and resets the whole form, collections
included, in one step. Async work captures the version it started under;
results arriving after a newer selection are dropped and logged.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import asyncio

from .attachments import AttachmentDrafts, LocalFile, Preview
from .entity_cache import EntityCache, EntityResolver
from .errors import ApiError, DeletionError, PersistenceError
from .field_registry import DescriptorIndex, FieldDescriptor, FieldDescriptorRegistry
from .form_state import FieldAddressMap, FormState
from .notifications import LoggingNotifier, Notifier
from .order_logging import create_logger
from .reconciler import LINE_SPECS, LineRemover, grand_total, seed_from_record, to_form_item
from .schema_builder import ATTACHMENTS, KNOWN_COLLECTIONS, PAYMENTS, FormSchema, build_form_schema
from .submission import CLASSIFICATION_FIELD, OrderPersister, SubmissionNormalizer
from .validation import FormValidator

logger = create_logger('order_engine.order_form')

# entity kind -> admin resource used for lookups
LOOKUP_RESOURCES = {
    'service': 'service',
    'document_type': 'document-type',
    'user': 'user',
}


class SessionState(str, Enum):
    UNSELECTED = 'unselected'
    LOADING = 'loading'
    READY = 'ready'


class SubmitStatus(str, Enum):
    SAVED = 'saved'
    INVALID = 'invalid'
    FAILED = 'failed'
    BUSY = 'busy'
    NOT_READY = 'not_ready'
    STALE = 'stale'


@dataclass
class SubmissionOutcome:
    status: SubmitStatus
    errors: Dict[str, str] = field(default_factory=dict)
    record: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == SubmitStatus.SAVED


def classification_of(record: Dict[str, Any]) -> Optional[str]:
    value = record.get(CLASSIFICATION_FIELD)
    if value in (None, ''):
        service_type = record.get('service_type')
        value = service_type.get('id') if isinstance(service_type, dict) else None
    return None if value in (None, '') else str(value)


class OrderFormSession:
    """Owns the form state of one order and every operation on it.

    ``api`` is the backend collaborator (``OrderApi`` or a test double).
    """

    def __init__(self, api, notifier: Notifier = None, cache: EntityCache = None,
                 address_map: FieldAddressMap = None, drafts: AttachmentDrafts = None):
        self.api = api
        self.notifier = notifier or LoggingNotifier()
        self.cache = cache or EntityCache()
        self.address_map = address_map or FieldAddressMap()
        self.registry = FieldDescriptorRegistry(api)
        self.drafts = drafts or AttachmentDrafts(api, notifier=self.notifier)
        self.remover = LineRemover(api.line_deleters())
        self.persister = OrderPersister(api)
        self.normalizer = SubmissionNormalizer()

        self.form_state = FormState()
        self.state = SessionState.UNSELECTED
        self.version = 0
        self.classification_id: Optional[str] = None
        self.parent_id: Optional[str] = None
        self.descriptors: List[FieldDescriptor] = []
        self.index = DescriptorIndex([])
        self.schema: Optional[FormSchema] = None
        self.defaults: Dict[str, Any] = {}
        self.validator: Optional[FormValidator] = None
        self.is_submitting = False

    def is_current(self, version: int) -> bool:
        return self.version == version

    def _stale(self, version: int, what: str) -> bool:
        if self.is_current(version):
            return False
        logger.info(f'Ignoring {what} started under version {version}, current version is {self.version}')
        return True

    # ----------------------------- Classification -----------------------------

    async def select_classification(self, classification_id: str) -> bool:
        """Switch to ``classification_id``: reset the form, fetch descriptors, rebuild the schema."""
        self.version += 1
        version = self.version
        self.state = SessionState.LOADING
        self.classification_id = classification_id
        self.schema = None
        self.validator = None
        self.form_state.reset()

        try:
            descriptors = await asyncio.to_thread(self.registry.fetch, classification_id)
        except ApiError as e:
            if self._stale(version, 'descriptor fetch failure'):
                return False
            logger.error(f'Could not load fields for classification {classification_id}: {e}')
            self.notifier.error('Tipo de serviço', 'Não foi possível carregar os campos')
            self.state = SessionState.UNSELECTED
            self.classification_id = None
            return False

        if self._stale(version, f'descriptors of {classification_id}'):
            return False

        self.descriptors = descriptors
        self.index = DescriptorIndex(descriptors)
        self.schema, self.defaults = build_form_schema(descriptors)
        self.validator = FormValidator(self.schema, self.address_map)
        self.form_state.reset(self.defaults)
        self.state = SessionState.READY
        logger.info(f'Classification {classification_id} ready (version {version})')
        return True

    async def load_order(self, order_id: str) -> bool:
        """Open an existing order: select its classification, then fill values and collections."""
        try:
            record = await asyncio.to_thread(self.api.get_order, order_id)
        except ApiError as e:
            logger.error(f'Could not load service order {order_id}: {e}')
            self.notifier.error('Ordem de serviço', 'Não foi possível carregar a ordem')
            return False
        if not record:
            self.notifier.warn('Ordem de serviço', f'Ordem {order_id} não encontrada')
            return False

        classification_id = classification_of(record)
        if classification_id is None or not await self.select_classification(classification_id):
            return False

        values = dict(self.defaults)
        values.update({k: v for k, v in record.items()
                       if k not in KNOWN_COLLECTIONS and not isinstance(v, (list, dict))})
        self.form_state.reset(values)
        self.parent_id = str(record.get('id') or order_id)
        seed_from_record(self.form_state, record, self.cache)
        self.drafts.replace_with_server(self.form_state, record.get(ATTACHMENTS))
        return True

    # ----------------------------- Editing -----------------------------

    def set_value(self, path: str, value: Any):
        self.form_state.set(path, value)

    def append_line(self, collection: str, item: Dict[str, Any] = None) -> int:
        if item is None:
            spec = LINE_SPECS.get(collection)
            item = to_form_item(spec, {}) if spec else {}
        return self.form_state.append(collection, item)

    async def remove_line(self, collection: str, index: int) -> bool:
        """Remove a line; identified lines are deleted remotely before they leave the form."""
        if collection == ATTACHMENTS:
            return await self.drafts.delete(self.form_state, index)

        items = self.form_state.items(collection)
        if index < 0 or index >= len(items):
            return False
        line = items[index]
        version = self.version
        try:
            await asyncio.to_thread(self.remover.delete_remote, collection, line)
        except DeletionError as e:
            self.notifier.error('Remover', str(e))
            return False
        if self._stale(version, f'{collection} line removal'):
            return False

        for position, candidate in enumerate(self.form_state.items(collection)):
            if candidate is line:
                self.form_state.remove(collection, position)
                return True
        return False

    def payments_total(self) -> str:
        return grand_total(self.form_state.items(PAYMENTS))

    def resolver(self, kind: str) -> EntityResolver:
        resource = LOOKUP_RESOURCES.get(kind)
        lookup = self.api.lookup(resource) if resource else None
        return EntityResolver(kind, self.cache, lookup)

    # ----------------------------- Attachments -----------------------------

    async def upload(self, files: List[LocalFile]):
        version = self.version
        return await self.drafts.upload_batch(self.form_state, files, is_current=lambda: self.is_current(version))

    async def preview_attachment(self, index: int) -> Optional[Preview]:
        items = self.form_state.items(ATTACHMENTS)
        if index < 0 or index >= len(items):
            return None
        return await self.drafts.preview(items[index])

    # ----------------------------- Submit -----------------------------

    async def submit(self, submitted: Dict[str, Any] = None) -> SubmissionOutcome:
        if self.is_submitting:
            return SubmissionOutcome(SubmitStatus.BUSY)
        if self.state != SessionState.READY or self.validator is None:
            return SubmissionOutcome(SubmitStatus.NOT_READY)

        self.is_submitting = True
        version = self.version
        try:
            result = self.validator.validate(self.form_state, submitted)
            if not result.valid:
                return SubmissionOutcome(SubmitStatus.INVALID, errors=result.errors)

            payload = self.normalizer.normalize(result.cleaned, self.classification_id, self.form_state.snapshot())
            try:
                record = await asyncio.to_thread(self.persister.save, self.parent_id, payload)
            except PersistenceError as e:
                if self._stale(version, 'save failure'):
                    return SubmissionOutcome(SubmitStatus.STALE, payload=payload)
                errors = self.address_map.translate_errors(e.field_errors)
                if errors:
                    self.form_state.set_errors(errors)
                else:
                    self.notifier.error('Erro', 'Não foi possível salvar')
                return SubmissionOutcome(SubmitStatus.FAILED, errors=errors, payload=payload)

            if self._stale(version, 'save result'):
                return SubmissionOutcome(SubmitStatus.STALE, record=record, payload=payload)

            self.parent_id = self.persister.record_id(record) or self.parent_id
            if isinstance(record.get(ATTACHMENTS), list):
                self.drafts.replace_with_server(self.form_state, record[ATTACHMENTS])
            self.notifier.success('Sucesso', 'Ordem de serviço salva')
            return SubmissionOutcome(SubmitStatus.SAVED, record=record, payload=payload)
        finally:
            self.is_submitting = False
