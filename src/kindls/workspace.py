"""The coordinating component: owns every piece of mutable server state.

Only this class touches the document store, the definition store and the
last-published diagnostics, so the LSP handlers and the command line share a
single, explicit environment instead of module-level tables.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path

from lsprotocol.types import (
    CompletionItem,
    CompletionItemKind,
    Diagnostic,
    Hover,
    Location,
    MarkupContent,
    MarkupKind,
    Position,
    Range,
)

from kindls.analyzer import AnalysisOutcome, IncrementalAnalyzer, OutcomeKind
from kindls.config import ServerConfig
from kindls.definitions import DefinitionStore
from kindls.diagnostics import parse_error_diagnostics, reconcile
from kindls.documents import DocumentStore, FileReader, SourceFile
from kindls.engine import Definition, Engine, load_engine_factory
from kindls.engine_client import SubprocessEngine
from kindls.exceptions import ConfigError
from kindls.files import list_files, read_file
from kindls.invariants import require_not_none
from kindls.positions import (
    offset_to_position,
    position_to_offset,
    token_range_at,
)

logger = logging.getLogger(__name__)

DiagnosticMap = dict[str, list[Diagnostic]]


def build_engine(config: ServerConfig, root: Path | None = None) -> Engine:
    if config.engine.factory:
        return load_engine_factory(config.engine.factory)()
    if config.engine.command:
        return SubprocessEngine(
            config.engine.command, cwd=root, timeout_ms=config.engine.timeout_ms
        )
    raise ConfigError("no engine configured: set engine.factory or engine.command")


def markdown_code_block(text: str, language: str = "kind") -> str:
    return f"```{language}\n{text}\n```\n"


class Workspace:
    def __init__(
        self,
        engine: Engine,
        config: ServerConfig | None = None,
        *,
        reader: FileReader = read_file,
    ) -> None:
        self.config = config or ServerConfig()
        self.engine = engine
        self.documents = DocumentStore(reader)
        self.definitions = DefinitionStore()
        self.analyzer = IncrementalAnalyzer(engine, self.definitions)
        self.published: DiagnosticMap = {}
        self._parse_errors: DiagnosticMap = {}

    # Documents

    def open(self, uri: str, text: str, version: int) -> SourceFile:
        return self.documents.open(uri, text, version)

    def change(self, uri: str, text: str, version: int) -> SourceFile:
        return self.documents.apply_edit(uri, text, version)

    def close(self, uri: str) -> None:
        self.documents.close(uri)

    def resolve_position(
        self, uri: str, offset: int, texts: Mapping[str, str] | None = None
    ) -> Position:
        """Map ``offset`` in ``uri`` to a position.

        ``texts`` pins a file to the text an analysis pass actually saw, so an
        edit that lands while the engine runs cannot shift the ranges.
        """
        text = texts.get(uri) if texts else None
        if text is None:
            text = self.documents.text(uri)
        if text is None:
            return Position(line=0, character=0)
        return offset_to_position(text, offset)

    # Analysis

    def scan(self, roots: Iterable[Path]) -> dict[str, str]:
        sources: dict[str, str] = {}
        for root in roots:
            for uri in list_files(root, self.config.extensions, exclude=self.config.exclude):
                if uri in sources:
                    continue
                doc = self.documents.get(uri)
                if doc is None:
                    continue
                sources[uri] = doc.text
        # Open buffers outside the roots stay part of the workspace.
        for uri in self.documents.open_uris():
            if uri not in sources:
                sources[uri] = self.documents.text(uri) or ""
        return sources

    def load(self, roots: Sequence[Path]) -> AnalysisOutcome:
        """Startup: read every source file under ``roots`` and rebuild."""
        sources = self.scan(roots)
        logger.info("found %d source file(s) under %s", len(sources), ", ".join(map(str, roots)))
        return self.analyzer.rebuild(sources)

    def analyze(self, uri: str, text: str | None = None) -> AnalysisOutcome:
        if text is None:
            text = self.documents.text(uri)
        if text is None:
            logger.warning("document not found: %s", uri)
            return AnalysisOutcome(
                kind=OutcomeKind.ENGINE_FAILURE, uri=uri, error="document not found"
            )
        return self.analyzer.run(uri, text)

    def diagnostics_for(self, outcome: AnalysisOutcome) -> DiagnosticMap | None:
        """Turn an outcome into the per-file updates to publish.

        Returns ``None`` when nothing should be sent: an engine failure
        leaves whatever the editor shows in place.
        """
        if outcome.kind is OutcomeKind.ENGINE_FAILURE:
            logger.error("analysis pass abandoned: %s", outcome.error)
            return None
        if outcome.kind is OutcomeKind.PARSE_ERROR:
            failure = require_not_none(outcome.parse_error, reason="parse error outcome without failure")
            uri = require_not_none(outcome.uri, reason="parse error outcome without uri")
            updates = self._record_parse_error(
                uri, failure.offset, failure.message, outcome.texts
            )
        else:
            if outcome.uri is None:
                # Full rebuild: parse errors are re-derived from scratch.
                self._parse_errors.clear()
            else:
                self._parse_errors.pop(outcome.uri, None)
            known = self.definitions.all_known_files()
            known.update(outcome.parse_failures)
            if outcome.uri is None:
                # Files dropped by the rescan (deleted, or no longer under a
                # root) still get an empty list so nothing stays stuck.
                known.update(self.published)

            def resolve(uri: str, offset: int) -> Position:
                return self.resolve_position(uri, offset, outcome.texts)

            updates = reconcile(outcome.report, known, resolve, source=self.config.source)
            for uri, failure in outcome.parse_failures.items():
                self._record_parse_error(uri, failure.offset, failure.message, outcome.texts)
            # A file that still fails to parse keeps its parse error even when
            # another file's pass reports nothing for it.
            updates.update(self._parse_errors)
        self.published.update(updates)
        return updates

    def _record_parse_error(
        self, uri: str, offset: int, message: str, texts: Mapping[str, str]
    ) -> DiagnosticMap:
        def resolve(target: str, at: int) -> Position:
            return self.resolve_position(target, at, texts)

        updates = parse_error_diagnostics(uri, offset, message, resolve, source=self.config.source)
        self._parse_errors[uri] = updates[uri]
        return updates

    def check(self, uri: str, text: str | None = None) -> DiagnosticMap | None:
        return self.diagnostics_for(self.analyze(uri, text))

    # Queries

    def lookup(self, name: str) -> Definition | None:
        """Find ``name`` in the current tables.

        The parse-level table decides whether the name exists and where it
        lives. The synthesis table only supplies the elaborated entry while it
        still describes the same source span; after a failed or in-flight pass
        it may lag behind.
        """
        parsed = self.definitions.global_defs.get(name)
        if parsed is None:
            return None
        synthesized = self.analyzer.synth_defs.get(name)
        if synthesized is None or (synthesized.file, synthesized.start, synthesized.end) != (
            parsed.file,
            parsed.start,
            parsed.end,
        ):
            return parsed
        return synthesized

    def _token_at(self, uri: str, position: Position) -> tuple[str, int, int] | None:
        doc = self.documents.get(uri)
        if doc is None:
            logger.info("document not found: %s", uri)
            return None
        offset = position_to_offset(doc.text, position)
        span = token_range_at(doc.text, offset)
        if span is None:
            return None
        return doc.text[span[0] : span[1]], span[0], span[1]

    def hover(self, uri: str, position: Position) -> Hover | None:
        found = self._token_at(uri, position)
        if found is None:
            logger.debug("no token under cursor at %s:%d:%d", uri, position.line, position.character)
            return None
        name, start, end = found
        definition = self.lookup(name)
        if definition is None:
            return None
        text = definition.name
        if definition.signature:
            text = f"{definition.name} : {definition.signature}"
        doc_text = self.documents.text(uri) or ""
        return Hover(
            contents=MarkupContent(kind=MarkupKind.Markdown, value=markdown_code_block(text)),
            range=Range(
                start=offset_to_position(doc_text, start),
                end=offset_to_position(doc_text, end),
            ),
        )

    def definition(self, uri: str, position: Position) -> list[Location] | None:
        started = time.perf_counter()
        found = self._token_at(uri, position)
        if found is None:
            return None
        definition = self.lookup(found[0])
        if definition is None:
            return None
        target_text = self.documents.text(definition.file)
        if target_text is None:
            logger.info("definition target not readable: %s", definition.file)
            return None
        location = Location(
            uri=definition.file,
            range=Range(
                start=offset_to_position(target_text, definition.start),
                end=offset_to_position(target_text, definition.end),
            ),
        )
        logger.debug("resolved definition of %s in %.1fms", found[0], (time.perf_counter() - started) * 1000)
        return [location]

    def completions(self) -> list[CompletionItem]:
        items: list[CompletionItem] = []
        for name in sorted(self.definitions.global_defs):
            definition = self.lookup(name)
            items.append(
                CompletionItem(
                    label=name,
                    kind=CompletionItemKind.Function,
                    detail=definition.signature if definition is not None else None,
                )
            )
        return items
