"""Error types raised by the diagnostics core, and the reporter that collects them."""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)


class ThriftDiagError(Exception):
    """Base error for thriftdiag."""


class IncludeResolutionError(ThriftDiagError):
    """An include statement could not be resolved or read."""

    def __init__(self, include_path: str, reason: str, target: Optional[Path] = None) -> None:
        self.include_path = include_path
        self.target = target
        location = f" ({target})" if target else ""
        super().__init__(f"Cannot load include '{include_path}'{location}: {reason}")


class WorkspaceError(ThriftDiagError):
    """A document is not known to the workspace."""


@dataclass(frozen=True, slots=True)
class ErrorReport:
    component: str
    operation: str
    message: str
    error_type: str
    file_path: Optional[Path] = None


class ErrorReporter:
    """Logs recoverable failures and keeps the most recent ones for inspection."""

    def __init__(self, max_reports: int = 100) -> None:
        self._reports: Deque[ErrorReport] = deque(maxlen=max_reports)

    def report(
        self,
        error: BaseException,
        *,
        component: str,
        operation: str,
        file_path: Optional[Path] = None,
    ) -> ErrorReport:
        record = ErrorReport(
            component=component,
            operation=operation,
            message=str(error),
            error_type=type(error).__name__,
            file_path=file_path,
        )
        self._reports.append(record)
        logger.warning(
            "%s.%s failed%s: %s",
            component,
            operation,
            f" for {file_path}" if file_path else "",
            error,
        )
        return record

    @property
    def reports(self) -> List[ErrorReport]:
        return list(self._reports)

    def clear(self) -> None:
        self._reports.clear()
