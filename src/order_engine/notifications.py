from dataclasses import dataclass
from enum import Enum
from typing import List
import logging

from .order_logging import create_logger


class Severity(str, Enum):
    SUCCESS = 'success'
    INFO = 'info'
    WARN = 'warn'
    ERROR = 'error'


@dataclass(frozen=True)
class Notification:
    severity: Severity
    summary: str
    detail: str


class Notifier:
    """Operator-facing messages (the toasts of the form). Subclasses implement ``notify``."""

    def notify(self, severity: Severity, summary: str, detail: str):
        raise NotImplementedError

    def success(self, summary: str, detail: str):
        self.notify(Severity.SUCCESS, summary, detail)

    def info(self, summary: str, detail: str):
        self.notify(Severity.INFO, summary, detail)

    def warn(self, summary: str, detail: str):
        self.notify(Severity.WARN, summary, detail)

    def error(self, summary: str, detail: str):
        self.notify(Severity.ERROR, summary, detail)


_SEVERITY_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class LoggingNotifier(Notifier):

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or create_logger('order_engine.notifications')

    def notify(self, severity: Severity, summary: str, detail: str):
        self.logger.log(_SEVERITY_LEVELS[severity], f'[{severity.value}] {summary}: {detail}')


class RecordingNotifier(Notifier):
    """Keeps every notification in memory, in order."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(self, severity: Severity, summary: str, detail: str):
        self.notifications.append(Notification(severity, summary, detail))

    def of(self, severity: Severity) -> List[Notification]:
        return [n for n in self.notifications if n.severity == severity]

    def clear(self):
        self.notifications = []
