from typing import Any, Dict, Optional


class OrderEngineError(Exception):
    """Base class for every error raised by the order form engine."""


class SchemaValidationError(OrderEngineError):
    """Local, field-addressed validation failure. Never reaches the network."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Form validation failed for: {fields}")


class ApiError(OrderEngineError):
    """Transport level failure (non-2xx response or connection problem)."""

    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def field_errors(self) -> Optional[Dict[str, str]]:
        """Structured field-error map carried in the response body, if any.

        Accepts the usual backend shapes: ``{"errors": {"field": ["msg", ...]}}``
        or ``{"errors": {"field": "msg"}}``.
        """
        if not isinstance(self.details, dict):
            return None
        errors = self.details.get("errors")
        if not isinstance(errors, dict) or not errors:
            return None
        result: Dict[str, str] = {}
        for field, messages in errors.items():
            if isinstance(messages, (list, tuple)):
                messages = messages[0] if messages else ""
            result[str(field)] = str(messages)
        return result


class UploadError(OrderEngineError):
    """One file of an upload batch failed. Siblings are not affected."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"Upload of '{filename}' failed: {reason}")
        self.filename = filename
        self.reason = reason


class PersistenceError(OrderEngineError):
    """Remote create/update rejected."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None, status: Optional[int] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}
        self.status = status


class DeletionError(OrderEngineError):
    """Remote delete failed. The local item must be kept."""

    def __init__(self, message: str, item_id: Optional[str] = None):
        super().__init__(message)
        self.item_id = item_id
