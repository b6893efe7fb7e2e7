from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Callable

from lsprotocol.types import Diagnostic, DiagnosticSeverity, Position, Range

from kindls.engine import DiagnosticRecord, Severity

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "Kind"

PositionResolver = Callable[[str, int], Position]

_SEVERITY = {
    Severity.ERROR: DiagnosticSeverity.Error,
    Severity.WARNING: DiagnosticSeverity.Warning,
    Severity.INFO: DiagnosticSeverity.Information,
    Severity.HINT: DiagnosticSeverity.Hint,
}


def to_diagnostic(
    record: DiagnosticRecord,
    resolve_position: PositionResolver,
    *,
    source: str = DEFAULT_SOURCE,
) -> Diagnostic:
    start = resolve_position(record.file, record.from_offset)
    end = resolve_position(record.file, max(record.from_offset, record.upto_offset))
    return Diagnostic(
        range=Range(start=start, end=end),
        message=record.message,
        severity=_SEVERITY[Severity(record.severity)],
        source=source,
    )


def reconcile(
    report: Iterable[DiagnosticRecord],
    known_files: Iterable[str],
    resolve_position: PositionResolver,
    *,
    source: str = DEFAULT_SOURCE,
) -> dict[str, list[Diagnostic]]:
    """Group a flat engine report into one diagnostic list per known file.

    The result has a key for every known file, with an empty list where the
    report says nothing, so the editor clears whatever it showed before.
    """
    result: dict[str, list[Diagnostic]] = {uri: [] for uri in sorted(set(known_files))}
    for record in report:
        bucket = result.get(record.file)
        if bucket is None:
            logger.debug("dropping diagnostic for unknown file %s", record.file)
            continue
        bucket.append(to_diagnostic(record, resolve_position, source=source))
    return result


def parse_error_diagnostics(
    uri: str,
    offset: int,
    message: str,
    resolve_position: PositionResolver,
    *,
    source: str = DEFAULT_SOURCE,
) -> dict[str, list[Diagnostic]]:
    record = DiagnosticRecord(
        message=message,
        severity=Severity.ERROR,
        file=uri,
        from_offset=offset,
        upto_offset=offset,
    )
    return {uri: [to_diagnostic(record, resolve_position, source=source)]}
