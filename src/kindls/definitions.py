"""Per-file definitions and the merged workspace table.

Names are owned by exactly one file at a time. On an incremental re-parse the
newest-parsed file wins a collision; on the full rebuild the first file in
listing order wins and later colliding files sit out until their next edit.

Every mutation builds a fresh table and swaps the reference, so a reader
holding ``global_defs`` never observes a half-applied update.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

from kindls.engine import Definition, DefinitionSet, GlobalDefs
from kindls.exceptions import MergeConflict

logger = logging.getLogger(__name__)


class DefinitionStore:
    def __init__(self) -> None:
        self._per_file: dict[str, dict[str, Definition]] = {}
        self._owners: dict[str, str] = {}
        self._global: GlobalDefs = MappingProxyType({})
        self._parsed_at: dict[str, int] = {}
        self._seq = 0
        self.last_conflicts: list[MergeConflict] = []

    @property
    def global_defs(self) -> GlobalDefs:
        return self._global

    def definitions_for(self, uri: str) -> DefinitionSet:
        return MappingProxyType(self._per_file.get(uri, {}))

    def owner_of(self, name: str) -> str | None:
        return self._owners.get(name)

    def all_known_files(self) -> set[str]:
        return set(self._per_file)

    def _stamp(self, uri: str) -> None:
        self._seq += 1
        self._parsed_at[uri] = self._seq

    def _fallback_owner(self, name: str, *, exclude: str) -> str | None:
        candidates = [
            uri
            for uri, defs in self._per_file.items()
            if uri != exclude and name in defs
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda uri: self._parsed_at.get(uri, 0))

    def record_parse(self, uri: str, defs: DefinitionSet) -> list[str]:
        """Replace ``uri``'s definitions and return the names it now owns."""
        table = dict(self._global)
        owners = dict(self._owners)
        previous = [name for name, owner in self._owners.items() if owner == uri]
        for name in previous:
            del table[name]
            del owners[name]

        self._per_file[uri] = dict(defs)
        self._stamp(uri)
        for name, definition in defs.items():
            owner = owners.get(name)
            if owner is not None and owner != uri:
                logger.warning("%s: %s shadows the definition from %s", uri, name, owner)
            table[name] = definition
            owners[name] = uri

        for name in previous:
            if name in table:
                continue
            fallback = self._fallback_owner(name, exclude=uri)
            if fallback is not None:
                logger.info("%s: reinstating %s from %s", uri, name, fallback)
                table[name] = self._per_file[fallback][name]
                owners[name] = fallback

        self._owners = owners
        self._global = MappingProxyType(table)
        return list(defs)

    def merge_all(self, per_file: Mapping[str, DefinitionSet]) -> GlobalDefs:
        """Rebuild the workspace table from scratch.

        A file whose names collide with already merged files is skipped for
        this pass and reported in ``last_conflicts``.
        """
        self._per_file = {}
        self._parsed_at = {}
        table: dict[str, Definition] = {}
        owners: dict[str, str] = {}
        conflicts: list[MergeConflict] = []
        for uri, defs in per_file.items():
            self._per_file[uri] = dict(defs)
            self._stamp(uri)
            clashing = [name for name in defs if name in owners]
            if clashing:
                conflict = MergeConflict(
                    uri, clashing, {name: owners[name] for name in clashing}
                )
                logger.warning("skipping %s for this pass: %s", uri, conflict)
                conflicts.append(conflict)
                continue
            for name, definition in defs.items():
                table[name] = definition
                owners[name] = uri
        self._owners = owners
        self._global = MappingProxyType(table)
        self.last_conflicts = conflicts
        return self._global
