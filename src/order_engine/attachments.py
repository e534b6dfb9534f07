"""
Attachment draft manager.

Files can be attached before the parent order exists. Each file goes through a
two phase upload (presign, then a direct PUT of the bytes) and is appended to
the form's ``attachments`` collection as a local draft carrying its
``LocalFile``. Drafts have no ``id``; the server assigns ids when the order is
saved and returns the canonical attachment list, which then replaces the
drafts wholesale.

Item states:

- ``local-pending``: upload in flight, not in the collection yet;
- ``local-ready``: uploaded, in the collection, no ``id``;
- ``persisted``: known remotely (has ``id``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote
import asyncio
import posixpath

from .errors import ApiError, UploadError
from .form_state import FormState
from .notifications import LoggingNotifier, Notifier
from .order_env import OrderEnv
from .order_logging import create_logger
from .schema_builder import ATTACHMENTS

logger = create_logger('order_engine.attachments')

OCTET_STREAM = 'application/octet-stream'

PDF_EXTENSIONS = ('pdf',)
OFFICE_EXTENSIONS = ('doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'odt', 'ods', 'odp')
IMAGE_EXTENSIONS = ('png', 'jpg', 'jpeg', 'gif', 'bmp', 'webp', 'svg')


@dataclass(frozen=True)
class LocalFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None


class AttachmentState(str, Enum):
    LOCAL_PENDING = 'local-pending'
    LOCAL_READY = 'local-ready'
    PERSISTED = 'persisted'


def state_of(item: Dict[str, Any]) -> AttachmentState:
    if item.get('id'):
        return AttachmentState.PERSISTED
    return AttachmentState.LOCAL_READY


class PreviewKind(str, Enum):
    LOCAL = 'local'
    PDF = 'pdf'
    OFFICE = 'office'
    IMAGE = 'image'
    FRAME = 'frame'


@dataclass
class Preview:
    kind: PreviewKind
    name: str
    url: Optional[str] = None
    content: Optional[bytes] = None
    content_type: Optional[str] = None


@dataclass
class UploadOutcome:
    filename: str
    item: Optional[Dict[str, Any]] = None
    error: Optional[UploadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UploadBatchResult:
    outcomes: List[UploadOutcome] = field(default_factory=list)
    discarded: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


def file_extension(name: Optional[str]) -> str:
    _, ext = posixpath.splitext((name or '').split('?', 1)[0])
    return ext[1:].lower()


def display_name(item: Dict[str, Any]) -> str:
    return item.get('name') or item.get('filename') or 'file'


class AttachmentDrafts:
    """Uploads, previews and deletes attachments of one form.

    ``storage`` needs ``presign``, ``upload_to_presign``, ``delete_attachment``,
    ``resolve_read_url`` and ``fetch_bytes`` (see ``OrderApi``).
    """

    def __init__(self, storage, notifier: Notifier = None, path_category: str = None,
                 office_viewer_url: str = None, collection: str = ATTACHMENTS):
        OrderEnv.load_env()
        self.storage = storage
        self.notifier = notifier or LoggingNotifier()
        self.path_category = path_category or OrderEnv.get_attachment_path_category()
        self.office_viewer_url = office_viewer_url or OrderEnv.get_office_viewer_url()
        self.collection = collection
        self.__pending: List[str] = []

    @property
    def pending_count(self) -> int:
        return len(self.__pending)

    # ----------------------------- Upload -----------------------------

    async def _upload_one(self, local_file: LocalFile) -> Dict[str, Any]:
        self.__pending.append(local_file.filename)
        try:
            presigned = await asyncio.to_thread(self.storage.presign, local_file.filename, self.path_category)
            upload_url = presigned.get('upload_url')
            if not upload_url:
                raise UploadError(local_file.filename, 'presign response has no upload url')
            await asyncio.to_thread(self.storage.upload_to_presign, upload_url, local_file.content,
                                    local_file.content_type or OCTET_STREAM)
        except UploadError:
            raise
        except ApiError as e:
            raise UploadError(local_file.filename, str(e)) from e
        except Exception as e:
            logger.exception(f'Unexpected error uploading {local_file.filename}')
            raise UploadError(local_file.filename, f'{type(e).__name__}: {e}') from e
        finally:
            self.__pending.remove(local_file.filename)

        filename = presigned.get('filename') or local_file.filename
        # no id: the server assigns it when the order is saved
        return {
            'filename': filename,
            'name': filename,
            'path': self.path_category,
            'created_at': None,
            'fileObject': local_file,
        }

    async def upload_batch(self, form_state: FormState, files: List[LocalFile],
                           is_current: Callable[[], bool] = None) -> UploadBatchResult:
        """Upload ``files`` concurrently and append the successful ones.

        When ``is_current`` turns false before the batch completes (the form
        was re-initialized meanwhile) nothing is appended or notified.
        """
        result = UploadBatchResult()
        if not files:
            return result

        results = await asyncio.gather(*(self._upload_one(f) for f in files), return_exceptions=True)
        for local_file, outcome in zip(files, results):
            if isinstance(outcome, UploadError):
                logger.error(f'Upload failed for {local_file.filename}: {outcome.reason}')
                result.outcomes.append(UploadOutcome(local_file.filename, error=outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.outcomes.append(UploadOutcome(local_file.filename, item=outcome))

        if is_current is not None and not is_current():
            logger.info(f'Discarding upload batch of {len(files)} file(s): form was re-initialized')
            result.discarded = True
            return result

        for outcome in result.outcomes:
            if outcome.ok:
                form_state.append(self.collection, outcome.item)

        if result.succeeded:
            self.notifier.success('Upload', f'{result.succeeded} arquivo(s) enviado(s)')
        if result.failed:
            self.notifier.error('Upload', f'{result.failed} falha(s)')
        return result

    # ----------------------------- Preview -----------------------------

    async def preview(self, item: Dict[str, Any]) -> Optional[Preview]:
        """Build a preview. The engine keeps no reference to the returned content."""
        name = display_name(item)
        attachment_id = item.get('id')
        if not attachment_id:
            local_file = item.get('fileObject')
            if isinstance(local_file, LocalFile):
                return Preview(PreviewKind.LOCAL, name, content=local_file.content,
                               content_type=local_file.content_type or OCTET_STREAM)
            self.notifier.warn('Arquivo não persistido', 'Salve a ordem antes de pré-visualizar.')
            return None

        try:
            url = await asyncio.to_thread(self.storage.resolve_read_url, attachment_id)
            ext = file_extension(item.get('filename') or item.get('name') or url)
            if ext in PDF_EXTENSIONS:
                content = await asyncio.to_thread(self.storage.fetch_bytes, url)
                return Preview(PreviewKind.PDF, name, url=url, content=content, content_type='application/pdf')
        except ApiError as e:
            logger.error(f'Preview failed for attachment {attachment_id}: {e}')
            self.notifier.error('Preview', 'Não foi possível gerar pré-visualização')
            return None

        if ext in OFFICE_EXTENSIONS:
            return Preview(PreviewKind.OFFICE, name, url=self.office_viewer_url + quote(url, safe=''))
        if ext in IMAGE_EXTENSIONS:
            return Preview(PreviewKind.IMAGE, name, url=url)
        return Preview(PreviewKind.FRAME, name, url=url)

    # ----------------------------- Delete -----------------------------

    async def delete(self, form_state: FormState, index: int) -> bool:
        """Remove one attachment. Persisted items are deleted remotely first; on failure the item stays."""
        items = form_state.items(self.collection)
        if index < 0 or index >= len(items):
            return False
        item = items[index]
        attachment_id = item.get('id')
        if not item.get('created_at') or not attachment_id:
            form_state.remove(self.collection, index)
            return True

        try:
            await asyncio.to_thread(self.storage.delete_attachment, attachment_id)
        except ApiError as e:
            logger.error(f'Failed to delete attachment {attachment_id}: {e}')
            self.notifier.error('Anexo', f'Não foi possível remover {display_name(item)}')
            return False

        # the list may have changed while the delete was in flight
        current = form_state.items(self.collection)
        for position, candidate in enumerate(current):
            if candidate.get('id') == attachment_id:
                form_state.remove(self.collection, position)
                break
        return True

    # ----------------------------- After save -----------------------------

    def replace_with_server(self, form_state: FormState, server_items: Any):
        """Adopt the server's canonical list, dropping every local draft and its file handle."""
        items = [dict(a) for a in server_items if isinstance(a, dict)] if isinstance(server_items, list) else []
        for item in items:
            item.pop('fileObject', None)
        form_state.replace_items(self.collection, items)
        logger.info(f'Attachments replaced with {len(items)} server item(s)')
