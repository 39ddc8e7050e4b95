"""Collection of type declarations from included files.

Each resolved include is scanned for declarations and the resulting
name -> kind map is cached per file. A cached map is reused only while its
TTL holds and the file's ``(mtime, size)`` is unchanged.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

from ..analysis.declarations import extract_include_paths, extract_type_kinds
from ..cache import AdaptiveCache
from ..config import IncludeCacheSettings
from ..exceptions import ErrorReporter, IncludeResolutionError, WorkspaceError
from ..models.records import Document, IncludeCacheEntry, TypeKindMap
from .workspace import WorkspaceHost

logger = logging.getLogger(__name__)


def build_include_cache(settings: IncludeCacheSettings) -> AdaptiveCache[str, IncludeCacheEntry]:
    return AdaptiveCache(
        max_size=settings.max_size,
        ttl=settings.ttl,
        lru_k=settings.lru_k,
        eviction_threshold=settings.eviction_threshold,
        size_estimator=lambda entry: len(entry.type_map),
    )


class IncludeTypeCollector:
    def __init__(
        self,
        workspace: WorkspaceHost,
        cache: Optional[AdaptiveCache[str, IncludeCacheEntry]] = None,
        settings: Optional[IncludeCacheSettings] = None,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self.workspace = workspace
        self.cache = cache if cache is not None else build_include_cache(settings or IncludeCacheSettings())
        self.error_reporter = error_reporter or ErrorReporter()

    async def collect(self, document: Document) -> TypeKindMap:
        """Merge the type maps of every include; earlier includes win on collisions.

        A failing include is reported and skipped, whatever the workspace raised.
        """
        merged: TypeKindMap = {}
        for include_path in extract_include_paths(document.text):
            try:
                type_map = await self._load(include_path, document.path.parent)
            except Exception as exc:
                self.error_reporter.report(
                    exc, component="IncludeTypeCollector", operation="collect", file_path=document.path
                )
                continue
            for name, kind in type_map.items():
                merged.setdefault(name, kind)
        return merged

    async def resolve_includes(self, document: Document) -> List[Path]:
        resolved: List[Path] = []
        for include_path in extract_include_paths(document.text):
            target = self.workspace.resolve_include_path(include_path, document.path.parent)
            if target is not None and target not in resolved:
                resolved.append(target)
        return resolved

    def invalidate(self, path: Path) -> bool:
        return self.cache.delete(str(path))

    def clear(self) -> None:
        self.cache.clear()

    async def _load(self, include_path: str, base_dir: Path) -> TypeKindMap:
        target = self.workspace.resolve_include_path(include_path, base_dir)
        if target is None:
            raise IncludeResolutionError(include_path, "path could not be resolved")

        key = str(target)
        file_stat = await self.workspace.stat_file(target)
        cached = self.cache.get(key)
        if cached is not None and cached.file_stat == file_stat:
            logger.debug("Include cache hit for %s", key)
            return cached.type_map

        logger.debug("Include cache miss for %s", key)
        try:
            text = await self.workspace.read_file(target)
        except (OSError, UnicodeDecodeError, WorkspaceError) as exc:
            raise IncludeResolutionError(include_path, str(exc), target) from exc

        type_map = extract_type_kinds(text)
        self.cache.set(key, IncludeCacheEntry(type_map=type_map, fetched_at=time.time(), file_stat=file_stat))
        return type_map
