from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def path_to_uri(path: Path) -> str:
    # Symlinks are kept: editors address files by the path they opened.
    return path.absolute().as_uri()


def list_files(
    root: Path,
    extensions: Iterable[str] = (),
    *,
    exclude: Iterable[str] = (),
) -> list[str]:
    """Recursively list source files under ``root`` as ``file://`` uris.

    Subdirectories are walked before the files of a directory and each group
    is sorted by name, so repeated scans return the same order.
    """
    suffixes = {ext if ext.startswith(".") else f".{ext}" for ext in extensions}
    skipped = set(exclude)
    result: list[str] = []
    try:
        entries = sorted(root.iterdir(), key=lambda entry: entry.name)
    except OSError as exc:
        logger.warning("cannot list %s: %s", root, exc)
        return result
    dirs = [entry for entry in entries if entry.is_dir()]
    files = [entry for entry in entries if not entry.is_dir()]
    for directory in dirs:
        if directory.name in skipped or directory.name.startswith("."):
            continue
        result.extend(list_files(directory, suffixes, exclude=skipped))
    for file in files:
        if suffixes and file.suffix not in suffixes:
            continue
        result.append(path_to_uri(file))
    return result


def read_file(uri: str) -> str:
    return uri_to_path(uri).read_text(encoding="utf-8")
