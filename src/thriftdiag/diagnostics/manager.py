"""Per-document diagnostics lifecycle.

The manager turns editor events into scheduled analysis runs. Each run
collects included types, analyses the document text, publishes the issues
(replacing whatever was published before), rebuilds the document's include
edges and schedules a delayed re-analysis of the files that include it.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..analysis import analyze
from ..config import Settings
from ..exceptions import ErrorReporter
from ..models.records import Document, DocumentAnalysisState, Issue
from .dependencies import DependencyGraph, DependencySnapshot
from .includes import IncludeTypeCollector
from .scheduler import AnalysisScheduler
from .workspace import PathLike, WorkspaceHost, normalize_path

logger = logging.getLogger(__name__)


class DiagnosticPublisher(ABC):
    @abstractmethod
    def publish(self, path: Path, issues: Sequence[Issue]) -> None:
        """Replace the full set of issues shown for ``path``."""

    @abstractmethod
    def clear(self, path: Path) -> None:
        ...


class InMemoryPublisher(DiagnosticPublisher):
    def __init__(self) -> None:
        self._published: Dict[Path, Tuple[Issue, ...]] = {}
        self.publish_count = 0

    def publish(self, path: Path, issues: Sequence[Issue]) -> None:
        self._published[path] = tuple(issues)
        self.publish_count += 1

    def clear(self, path: Path) -> None:
        self._published.pop(path, None)

    def get(self, path: PathLike) -> List[Issue]:
        return list(self._published.get(normalize_path(path), ()))

    def all(self) -> Dict[Path, List[Issue]]:
        return {path: list(issues) for path, issues in self._published.items()}


class DiagnosticManager:
    def __init__(
        self,
        workspace: WorkspaceHost,
        publisher: DiagnosticPublisher,
        settings: Optional[Settings] = None,
        scheduler: Optional[AnalysisScheduler] = None,
        collector: Optional[IncludeTypeCollector] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.workspace = workspace
        self.publisher = publisher
        self.error_reporter = error_reporter or ErrorReporter()
        self.scheduler = scheduler or AnalysisScheduler(self.settings.diagnostics)
        self.collector = collector or IncludeTypeCollector(
            workspace, settings=self.settings.include_cache, error_reporter=self.error_reporter
        )
        self.graph = DependencyGraph()
        self._states: Dict[str, DocumentAnalysisState] = {}

    def is_supported(self, path: PathLike) -> bool:
        name = Path(path).name
        return any(fnmatch(name, pattern) for pattern in self.settings.diagnostics.file_patterns)

    def schedule_analysis(
        self,
        document: Document,
        immediate: bool = False,
        skip_dependents: bool = False,
        source: Optional[str] = None,
        delay: Optional[float] = None,
    ) -> bool:
        if not self.is_supported(document.path):
            return False
        path = document.path
        accepted = self.scheduler.schedule(
            document.key,
            lambda: self._analyze(path, skip_dependents),
            version=document.version,
            immediate=immediate,
            throttle_state=self._states.get(document.key),
            delay=delay,
        )
        logger.debug(
            "Analysis request for %s (source=%s, immediate=%s): %s",
            path, source, immediate, "accepted" if accepted else "dropped",
        )
        return accepted

    def clear_document(self, document: Document) -> None:
        self.scheduler.cancel(document.key)
        self.publisher.clear(document.path)
        self._states.pop(document.key, None)

    def get_state(self, path: PathLike) -> Optional[DocumentAnalysisState]:
        return self._states.get(str(normalize_path(path)))

    def dependency_snapshot(self) -> DependencySnapshot:
        return self.graph.snapshot()

    def dispose(self) -> None:
        self.scheduler.dispose()
        self.graph.clear()
        self.collector.clear()
        self._states.clear()

    # --- lifecycle -------------------------------------------------------
    def on_open(self, document: Document) -> bool:
        return self.schedule_analysis(document, immediate=True, source="open")

    def on_change(self, document: Document) -> bool:
        return self.schedule_analysis(document, source="change")

    def on_save(self, document: Document) -> bool:
        return self.schedule_analysis(document, immediate=True, source="save")

    def on_close(self, document: Document) -> None:
        self.clear_document(document)
        self.graph.remove(document.path)
        self.collector.invalidate(document.path)

    def on_external_change(self, path: PathLike) -> int:
        """Invalidate all included types and re-analyse every open document.

        Returns the number of documents rescheduled; files that do not match
        the configured patterns are ignored.
        """
        if not self.is_supported(path):
            return 0
        self.collector.clear()
        count = 0
        for document in self.workspace.documents():
            if self.schedule_analysis(document, immediate=True, source="external"):
                count += 1
        return count

    # --- runs ------------------------------------------------------------
    async def _analyze(self, path: Path, skip_dependents: bool) -> None:
        document = self.workspace.get_document(path)
        if document is None:
            logger.debug("Skipping analysis of closed document %s", path)
            return

        state = self._states.get(document.key)
        if state is None:
            state = self._states[document.key] = DocumentAnalysisState(version=document.version)
        state.version = document.version
        state.is_analyzing = True
        try:
            included_types = await self.collector.collect(document)
            issues = analyze(document.text, included_types)
            includes = await self.collector.resolve_includes(document)
            if self.workspace.get_document(path) is None:
                return
            self.graph.track(document.path, includes)
            self.publisher.publish(document.path, issues)
            logger.debug("Published %d issues for %s", len(issues), path)
        except Exception as exc:
            logger.exception("Analysis of %s failed", path)
            self.error_reporter.report(exc, component="DiagnosticManager", operation="analyze", file_path=path)
            self.publisher.clear(path)
            return
        finally:
            state.is_analyzing = False
            state.last_analysis_at = self.scheduler.now()

        # Dependents must not reuse this file's cached declarations.
        self.collector.invalidate(document.path)
        if not skip_dependents:
            self._schedule_dependents(document.path)

    def _schedule_dependents(self, path: Path) -> None:
        for dependent_path in sorted(self.graph.dependents_of(path)):
            dependent = self.workspace.get_document(dependent_path)
            if dependent is None:
                continue
            self.schedule_analysis(
                dependent,
                immediate=True,
                skip_dependents=True,
                source="dependency",
                delay=self.settings.diagnostics.dependent_analysis_delay,
            )
