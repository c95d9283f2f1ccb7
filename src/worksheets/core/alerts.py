"""User-facing alerts.

Sessions never raise validation or network failures at the person driving
them; they report through an alert sink instead. The default sink keeps a
list so tests and the CLI can inspect what would have been shown.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class Severity(str, Enum):
    """Alert severity, ordered from benign to destructive."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Alert:
    """A single message surfaced to the user."""

    message: str
    severity: Severity = Severity.INFO


AlertSink = Callable[[Alert], None]


@dataclass
class AlertLog:
    """Alert sink that records every alert it receives."""

    alerts: list[Alert] = field(default_factory=list)

    def __call__(self, alert: Alert) -> None:
        self.alerts.append(alert)
        logger.debug("alert_shown", severity=alert.severity.value, message=alert.message)

    @property
    def last(self) -> Alert | None:
        return self.alerts[-1] if self.alerts else None

    def messages(self, severity: Severity | None = None) -> list[str]:
        """Messages recorded so far, optionally filtered by severity."""
        return [
            a.message for a in self.alerts if severity is None or a.severity == severity
        ]

    def clear(self) -> None:
        self.alerts.clear()
