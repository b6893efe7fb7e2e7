from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from kindls.files import read_file

logger = logging.getLogger(__name__)

FileReader = Callable[[str], str]


@dataclass(frozen=True)
class SourceFile:
    uri: str
    text: str
    version: int = 0


class DocumentStore:
    """Current text of every file the server knows about.

    Editor buffers are authoritative while open. Once closed, the file is
    served from a filesystem snapshot that is read lazily on first use.
    """

    def __init__(self, reader: FileReader = read_file) -> None:
        self._reader = reader
        self._open: dict[str, SourceFile] = {}
        self._snapshots: dict[str, SourceFile] = {}

    def get(self, uri: str) -> SourceFile | None:
        doc = self._open.get(uri)
        if doc is not None:
            return doc
        snapshot = self._snapshots.get(uri)
        if snapshot is not None:
            return snapshot
        try:
            text = self._reader(uri)
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("document not found: %s (%s)", uri, exc)
            return None
        snapshot = SourceFile(uri=uri, text=text, version=0)
        self._snapshots[uri] = snapshot
        return snapshot

    def text(self, uri: str) -> str | None:
        doc = self.get(uri)
        return doc.text if doc is not None else None

    def seed(self, uri: str, text: str) -> SourceFile:
        snapshot = SourceFile(uri=uri, text=text, version=0)
        if uri not in self._open:
            self._snapshots[uri] = snapshot
        return snapshot

    def open(self, uri: str, text: str, version: int) -> SourceFile:
        doc = SourceFile(uri=uri, text=text, version=version)
        self._open[uri] = doc
        self._snapshots.pop(uri, None)
        return doc

    def apply_edit(self, uri: str, text: str, version: int) -> SourceFile:
        current = self._open.get(uri)
        if current is not None and version < current.version:
            logger.debug(
                "ignoring stale edit for %s (version %d < %d)",
                uri,
                version,
                current.version,
            )
            return current
        return self.open(uri, text, version)

    def close(self, uri: str) -> None:
        # The snapshot is loaded on the next get(); the editor's unsaved text
        # is gone at this point anyway.
        self._open.pop(uri, None)
        self._snapshots.pop(uri, None)

    def is_open(self, uri: str) -> bool:
        return uri in self._open

    def open_uris(self) -> list[str]:
        return sorted(self._open)
