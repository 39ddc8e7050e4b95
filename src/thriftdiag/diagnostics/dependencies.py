from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Mapping, Set


@dataclass(frozen=True)
class DependencySnapshot:
    includes: Mapping[Path, FrozenSet[Path]]
    included_by: Mapping[Path, FrozenSet[Path]]


class DependencyGraph:
    """Include edges between files, kept in both directions."""

    def __init__(self) -> None:
        self._includes: Dict[Path, Set[Path]] = {}
        self._included_by: Dict[Path, Set[Path]] = {}

    def track(self, file: Path, includes: Iterable[Path]) -> None:
        """Replace all outgoing edges of ``file``."""
        self._drop_outgoing(file)
        targets = {target for target in includes if target != file}
        if not targets:
            return
        self._includes[file] = targets
        for target in targets:
            self._included_by.setdefault(target, set()).add(file)

    def includes_of(self, file: Path) -> Set[Path]:
        return set(self._includes.get(file, ()))

    def dependents_of(self, file: Path) -> Set[Path]:
        return set(self._included_by.get(file, ()))

    def remove(self, file: Path) -> None:
        self._drop_outgoing(file)
        for dependent in self._included_by.pop(file, set()):
            targets = self._includes.get(dependent)
            if targets is None:
                continue
            targets.discard(file)
            if not targets:
                del self._includes[dependent]

    def snapshot(self) -> DependencySnapshot:
        return DependencySnapshot(
            includes={file: frozenset(targets) for file, targets in self._includes.items()},
            included_by={file: frozenset(sources) for file, sources in self._included_by.items()},
        )

    def clear(self) -> None:
        self._includes.clear()
        self._included_by.clear()

    def _drop_outgoing(self, file: Path) -> None:
        for target in self._includes.pop(file, set()):
            sources = self._included_by.get(target)
            if sources is None:
                continue
            sources.discard(file)
            if not sources:
                del self._included_by[target]
