"""
Validation engine.

Validation runs on a snapshot: the live form state overlaid with the values
just submitted. The snapshot is normalized (``None`` -> ``""``, numbers and
booleans -> their string form), every ruled leaf is coerced through its type
tag and the coerced document is checked against the form's JSON Schema.

Errors come back keyed by form address (``payments.0.unit_price``), already
attached to the form state. Nothing here talks to the network.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import jsonschema
from jsonschema import Draft202012Validator
from jsonschema.validators import extend

from .errors import SchemaValidationError
from .field_types import stringify_scalar
from .form_state import FieldAddressMap, FormState
from .order_logging import create_logger
from .schema_builder import FormSchema, LeafRule, REQUIRED_MESSAGE, INVALID_MESSAGE

logger = create_logger('order_engine.validation')


def _is_datetime(checker, instance) -> bool:
    return isinstance(instance, date)


# Draft 2020-12 plus the "datetime" type used by date leaves
FormValidatorClass = extend(
    Draft202012Validator,
    type_checker=Draft202012Validator.TYPE_CHECKER.redefine("datetime", _is_datetime),
)


def normalize_snapshot_value(value: Any) -> Any:
    """Deep normalization applied before coercion."""
    if value is None:
        return ""
    if isinstance(value, bool) or isinstance(value, (int, float, Decimal)):
        return stringify_scalar(value)
    if isinstance(value, dict):
        return {k: normalize_snapshot_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_snapshot_value(v) for v in value]
    return value


def build_snapshot(live: Mapping[str, Any], submitted: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Submitted values win; keys only present in the live state are kept."""
    snapshot = dict(live)
    snapshot.update(submitted or {})
    return snapshot


@dataclass
class ValidationResult:
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    cleaned: Dict[str, Any] = field(default_factory=dict)

    def raise_for_errors(self):
        if not self.valid:
            raise SchemaValidationError(self.errors)


class FormValidator:

    def __init__(self, schema: FormSchema, address_map: FieldAddressMap = None):
        self.schema = schema
        self.address_map = address_map or FieldAddressMap()
        self.__validator = FormValidatorClass(schema.json_schema)

    def validate(self, form_state: FormState, submitted: Optional[Mapping[str, Any]] = None) -> ValidationResult:
        snapshot = build_snapshot(form_state.snapshot(), submitted)
        cleaned, errors = self.coerce(snapshot)
        for error in self.__validator.iter_errors(cleaned):
            for key, message in self._format_validation_error(error).items():
                errors.setdefault(key, message)

        translated = {self.address_map.translate(key): message for key, message in errors.items()}
        form_state.clear_errors()
        form_state.set_errors(translated)
        if translated:
            logger.debug(f"Validation failed with {len(translated)} error(s): {sorted(translated)}")
        return ValidationResult(valid=not translated, errors=translated, cleaned=cleaned)

    # ----------------------------- Coercion -----------------------------

    def coerce(self, snapshot: Mapping[str, Any]):
        """Coerce ruled leaves. Returns ``(cleaned, invalid_errors)``."""
        cleaned: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        leaves = self.schema.leaves
        collections = self.schema.collections

        for key, value in snapshot.items():
            if key in leaves or key in collections:
                continue
            cleaned[key] = value

        for name, rule in leaves.items():
            self.__coerce_leaf(rule, snapshot.get(name), name, cleaned, errors)

        for name, collection in collections.items():
            items = snapshot.get(name)
            if items is None:
                cleaned[name] = []
                continue
            if not isinstance(items, list):
                cleaned[name] = items
                continue
            coerced_items: List[Any] = []
            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    coerced_items.append(item)
                    continue
                coerced = {k: v for k, v in item.items() if k not in collection.leaves}
                for leaf_name, rule in collection.leaves.items():
                    self.__coerce_leaf(rule, item.get(leaf_name), f"{name}.{index}.{leaf_name}", coerced, errors,
                                       target_key=leaf_name)
                coerced_items.append(coerced)
            cleaned[name] = coerced_items
        return cleaned, errors

    @staticmethod
    def __coerce_leaf(rule: LeafRule, raw: Any, path: str, target: Dict[str, Any], errors: Dict[str, str],
                      target_key: str = None):
        normalized = normalize_snapshot_value(raw)
        coerced = rule.coerce(normalized)
        if coerced is None:
            if rule.strict and normalized != "":
                errors[path] = rule.invalid_message()
            return
        target[target_key or path] = coerced

    # ----------------------------- Error mapping -----------------------------

    def _label_for(self, key: str) -> str:
        rule = self.schema.leaf_for(key)
        return rule.label if rule else key.split(".")[-1]

    def _format_validation_error(self, err: jsonschema.exceptions.ValidationError) -> Dict[str, str]:
        loc = [str(p) for p in err.absolute_path]
        if err.validator == "required":
            missing = [p for p in err.validator_value if isinstance(err.instance, dict) and p not in err.instance]
            keys = [".".join(loc + [p]) for p in dict.fromkeys(missing)]
            return {key: REQUIRED_MESSAGE.format(label=self._label_for(key)) for key in keys}
        key = ".".join(loc)
        if err.validator == "minLength":
            return {key: REQUIRED_MESSAGE.format(label=self._label_for(key))}
        if err.validator == "type":
            return {key: INVALID_MESSAGE.format(label=self._label_for(key))}
        return {key: f"{key}: {err.message}" if key else err.message}
