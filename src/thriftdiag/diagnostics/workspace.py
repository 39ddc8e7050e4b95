from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..exceptions import WorkspaceError
from ..models.records import Document, FileStat

PathLike = Union[str, Path]


def normalize_path(path: PathLike) -> Path:
    return Path(path).expanduser().resolve()


class WorkspaceHost(ABC):
    """File access and open-document lookup used by the diagnostics core."""

    @abstractmethod
    def resolve_include_path(self, include_path: str, base_dir: Path) -> Optional[Path]:
        """Map an include string to a file identity, or None when it cannot be resolved."""

    @abstractmethod
    async def read_file(self, path: Path) -> str:
        """Return file text, preferring an open in-memory buffer over the disk copy."""

    @abstractmethod
    async def stat_file(self, path: Path) -> Optional[FileStat]:
        """Return ``(mtime, size)`` of the on-disk file, or None if it does not exist."""

    @abstractmethod
    def get_document(self, path: PathLike) -> Optional[Document]:
        ...

    @abstractmethod
    def documents(self) -> List[Document]:
        ...


class LocalWorkspace(WorkspaceHost):
    """Workspace over the local file system with a table of open documents."""

    def __init__(self) -> None:
        self._documents: Dict[Path, Document] = {}

    def resolve_include_path(self, include_path: str, base_dir: Path) -> Optional[Path]:
        if not include_path.strip():
            return None
        try:
            candidate = Path(include_path)
            if not candidate.is_absolute():
                candidate = Path(base_dir) / candidate
            return candidate.resolve()
        except (OSError, ValueError):
            return None

    async def read_file(self, path: Path) -> str:
        document = self._documents.get(normalize_path(path))
        if document is not None:
            return document.text
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    async def stat_file(self, path: Path) -> Optional[FileStat]:
        try:
            result = await asyncio.to_thread(Path(path).stat)
        except OSError:
            return None
        return FileStat(mtime=result.st_mtime, size=result.st_size)

    def get_document(self, path: PathLike) -> Optional[Document]:
        return self._documents.get(normalize_path(path))

    def documents(self) -> List[Document]:
        return list(self._documents.values())

    def open(self, path: PathLike, text: Optional[str] = None, version: int = 1) -> Document:
        """Register an open buffer; reads the file from disk when no text is given."""
        key = normalize_path(path)
        if text is None:
            try:
                text = key.read_text(encoding="utf-8")
            except OSError as exc:
                raise WorkspaceError(f"Cannot open {key}: {exc}") from exc
        document = Document(path=key, text=text, version=version)
        self._documents[key] = document
        return document

    def update(self, path: PathLike, text: str) -> Document:
        document = self._documents.get(normalize_path(path))
        if document is None:
            raise WorkspaceError(f"Document is not open: {path}")
        document.text = text
        document.version += 1
        return document

    def close(self, path: PathLike) -> Document:
        document = self._documents.pop(normalize_path(path), None)
        if document is None:
            raise WorkspaceError(f"Document is not open: {path}")
        return document
