"""Alerting collaborator for permanent delivery failures."""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Severity = Literal["warning", "error", "critical"]

_LEVELS: dict[str, int] = {
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@runtime_checkable
class AlertSink(Protocol):
    """Receives alerts about deliveries that will never succeed."""

    async def alert(self, severity: Severity, message: str, **context: Any) -> None: ...


class LogAlertSink:
    """Default sink: writes alerts to the log at the matching level."""

    def __init__(self, logger_name: str = "hookline.alerts") -> None:
        self._logger = logging.getLogger(logger_name)

    async def alert(self, severity: Severity, message: str, **context: Any) -> None:
        self._logger.log(_LEVELS.get(severity, logging.ERROR), message, extra={"alert": context})
