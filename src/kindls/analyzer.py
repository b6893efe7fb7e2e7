"""One recomputation pass: parse, re-merge, synthesize.

The analyzer picks the roots (the names the changed file owns) and hands the
engine an up-to-date environment; the engine is responsible for following
dependencies from there.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from kindls.definitions import DefinitionStore
from kindls.engine import (
    DefinitionSet,
    DiagnosticRecord,
    Engine,
    GlobalDefs,
    ParseFailure,
    ParseResult,
    ParseSuccess,
)
from kindls.invariants import never

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    PARSE_ERROR = "parse_error"
    SYNTHESIZED = "synthesized"
    ENGINE_FAILURE = "engine_failure"


@dataclass(frozen=True)
class AnalysisOutcome:
    kind: OutcomeKind
    uri: str | None = None
    roots: tuple[str, ...] = ()
    report: tuple[DiagnosticRecord, ...] = ()
    parse_error: ParseFailure | None = None
    # Startup only: files that failed to parse during the full rebuild.
    parse_failures: Mapping[str, ParseFailure] = field(default_factory=dict)
    # Text each file had when the engine saw it; ranges are resolved against it.
    texts: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None
    elapsed_ms: float = 0.0


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class IncrementalAnalyzer:
    def __init__(self, engine: Engine, store: DefinitionStore) -> None:
        self.engine = engine
        self.store = store
        self._synth_defs: GlobalDefs = MappingProxyType({})

    @property
    def synth_defs(self) -> GlobalDefs:
        """Definitions as last returned by synthesis (types attached)."""
        return self._synth_defs

    def _parse(self, uri: str, text: str) -> ParseResult:
        start = time.perf_counter()
        result = self.engine.parse(uri, text)
        if not isinstance(result, (ParseSuccess, ParseFailure)):
            never("engine returned an unknown parse result", uri=uri, kind=type(result).__name__)
        logger.debug("parsed %s in %.1fms", uri, _elapsed_ms(start))
        return result

    def _synthesize(self, names: Sequence[str]) -> tuple[GlobalDefs, tuple[DiagnosticRecord, ...]]:
        start = time.perf_counter()
        result = self.engine.synthesize(list(names), self.store.global_defs)
        report = tuple(result.report)
        defs = MappingProxyType(dict(result.defs))
        logger.debug(
            "synthesized %d root(s) in %.1fms, %d diagnostic(s)",
            len(names),
            _elapsed_ms(start),
            len(report),
        )
        return defs, report

    def run(self, uri: str, text: str) -> AnalysisOutcome:
        start = time.perf_counter()
        try:
            parsed = self._parse(uri, text)
        except Exception as exc:
            logger.exception("engine failed while parsing %s", uri)
            return AnalysisOutcome(
                kind=OutcomeKind.ENGINE_FAILURE,
                uri=uri,
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=_elapsed_ms(start),
            )
        if isinstance(parsed, ParseFailure):
            logger.info("parse error in %s at %d: %s", uri, parsed.offset, parsed.message)
            return AnalysisOutcome(
                kind=OutcomeKind.PARSE_ERROR,
                uri=uri,
                parse_error=parsed,
                texts={uri: text},
                elapsed_ms=_elapsed_ms(start),
            )

        roots = self.store.record_parse(uri, parsed.defs)
        try:
            defs, report = self._synthesize(roots)
        except Exception as exc:
            logger.exception("synthesis failed for %s; keeping previous diagnostics", uri)
            return AnalysisOutcome(
                kind=OutcomeKind.ENGINE_FAILURE,
                uri=uri,
                roots=tuple(roots),
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=_elapsed_ms(start),
            )
        self._synth_defs = defs
        return AnalysisOutcome(
            kind=OutcomeKind.SYNTHESIZED,
            uri=uri,
            roots=tuple(roots),
            report=report,
            texts={uri: text},
            elapsed_ms=_elapsed_ms(start),
        )

    def run_full(self, names: Sequence[str] | None = None) -> AnalysisOutcome:
        """Synthesize ``names`` (default: every known name) in one pass."""
        start = time.perf_counter()
        roots = list(self.store.global_defs) if names is None else list(names)
        try:
            defs, report = self._synthesize(roots)
        except Exception as exc:
            logger.exception("full synthesis pass failed")
            return AnalysisOutcome(
                kind=OutcomeKind.ENGINE_FAILURE,
                roots=tuple(roots),
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=_elapsed_ms(start),
            )
        self._synth_defs = defs
        return AnalysisOutcome(
            kind=OutcomeKind.SYNTHESIZED,
            roots=tuple(roots),
            report=report,
            elapsed_ms=_elapsed_ms(start),
        )

    def rebuild(self, sources: Mapping[str, str]) -> AnalysisOutcome:
        """Parse every file, merge from scratch and run one full pass."""
        start = time.perf_counter()
        parsed: dict[str, DefinitionSet] = {}
        failures: dict[str, ParseFailure] = {}
        for uri, text in sources.items():
            try:
                result = self._parse(uri, text)
            except Exception:
                logger.exception("engine failed while parsing %s; skipping it", uri)
                continue
            if isinstance(result, ParseFailure):
                logger.info("parse error in %s at %d: %s", uri, result.offset, result.message)
                failures[uri] = result
                continue
            parsed[uri] = result.defs
        self.store.merge_all(parsed)
        outcome = self.run_full()
        logger.info(
            "loaded %d file(s), %d parse failure(s), %d merge conflict(s) in %.1fms",
            len(sources),
            len(failures),
            len(self.store.last_conflicts),
            _elapsed_ms(start),
        )
        return AnalysisOutcome(
            kind=outcome.kind,
            roots=outcome.roots,
            report=outcome.report,
            parse_failures=failures,
            texts=dict(sources),
            error=outcome.error,
            elapsed_ms=_elapsed_ms(start),
        )
