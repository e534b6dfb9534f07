from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .order_logging import create_logger

logger = create_logger('order_engine.field_registry')

PAYMENTS_AREA = 'payments'


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    label: Optional[str] = None
    field_type: Optional[str] = None
    visible: bool = False
    required: bool = False
    default_value: Any = None
    area: Optional[str] = None

    @staticmethod
    def from_raw(raw: Dict[str, Any]) -> Optional['FieldDescriptor']:
        """Build a descriptor from the server shape. Entries without a name are skipped."""
        if not isinstance(raw, dict):
            return None
        name = raw.get('name')
        if not isinstance(name, str) or not name.strip():
            return None
        return FieldDescriptor(
            name=name.strip(),
            label=raw.get('label'),
            field_type=raw.get('field_type'),
            visible=raw.get('visible') is True,
            required=raw.get('required') is True,
            default_value=raw.get('default_value'),
            area=raw.get('area'),
        )

    def display_label(self) -> str:
        return self.label or self.name

    def has_default(self) -> bool:
        return self.default_value is not None and self.default_value != ''


def parse_descriptors(raw_fields: Any) -> List[FieldDescriptor]:
    descriptors: List[FieldDescriptor] = []
    if not isinstance(raw_fields, list):
        return descriptors
    for raw in raw_fields:
        descriptor = FieldDescriptor.from_raw(raw)
        if descriptor is None:
            logger.warning(f'Skipping malformed field descriptor: {raw}')
            continue
        descriptors.append(descriptor)
    return descriptors


class FieldDescriptorRegistry:
    """Per-classification field descriptors, fetched from the descriptor source.

    The source only needs ``get_service_type_fields(classification_id)``.
    """

    def __init__(self, source):
        self.source = source

    def fetch(self, classification_id: str) -> List[FieldDescriptor]:
        raw_fields = self.source.get_service_type_fields(classification_id)
        descriptors = parse_descriptors(raw_fields)
        logger.info(f'Loaded {len(descriptors)} field descriptors for classification {classification_id}')
        return descriptors


class DescriptorIndex:
    """Lookup helpers the form sections use to decide what to show."""

    def __init__(self, descriptors: List[FieldDescriptor]):
        self.__by_name = {d.name: d for d in descriptors}
        self.__descriptors = list(descriptors)

    def get(self, name: str) -> Optional[FieldDescriptor]:
        return self.__by_name.get(name)

    def is_visible(self, name: str) -> bool:
        descriptor = self.get(name)
        return bool(descriptor and descriptor.visible)

    def is_required(self, name: str) -> bool:
        descriptor = self.get(name)
        return bool(descriptor and descriptor.required)

    def payments_area_visible(self) -> bool:
        # no descriptors at all means nothing restricts the section
        if not self.__descriptors:
            return True
        for d in self.__descriptors:
            is_payment = (d.name.startswith('payment_') or d.name.startswith('payments_')
                          or d.area == PAYMENTS_AREA or 'payments.' in d.name)
            if is_payment and d.visible:
                return True
        return False
