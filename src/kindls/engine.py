"""Boundary types for the external parser/synthesizer.

The engine is opaque to the server: it turns source text into definitions and
type-checks a set of definition names against an environment. Everything the
server needs from it crosses this module as plain records.
"""

from __future__ import annotations

import importlib
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Protocol, TypeAlias, runtime_checkable

from kindls.exceptions import ConfigError

# Engine payloads and wire messages are plain JSON.
JSONValue: TypeAlias = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]


class Severity(IntEnum):
    ERROR = 1
    WARNING = 2
    INFO = 3
    HINT = 4


@dataclass(frozen=True)
class Definition:
    name: str
    file: str
    start: int
    end: int
    # Rendered type, filled in by synthesis.
    signature: str | None = None
    # Engine-private data, carried through untouched.
    payload: JSONValue = None


DefinitionSet: TypeAlias = Mapping[str, Definition]
GlobalDefs: TypeAlias = Mapping[str, Definition]


@dataclass(frozen=True)
class DiagnosticRecord:
    message: str
    severity: Severity
    file: str
    from_offset: int
    upto_offset: int


@dataclass(frozen=True)
class ParseSuccess:
    defs: DefinitionSet


@dataclass(frozen=True)
class ParseFailure:
    offset: int
    message: str


ParseResult: TypeAlias = ParseSuccess | ParseFailure


@dataclass(frozen=True)
class SynthesisResult:
    defs: GlobalDefs
    # Any restartable iterable; the analyzer materialises it exactly once.
    report: Iterable[DiagnosticRecord] = field(default_factory=tuple)


@runtime_checkable
class Engine(Protocol):
    def parse(self, uri: str, text: str) -> ParseResult: ...

    def synthesize(self, names: Sequence[str], defs: GlobalDefs) -> SynthesisResult: ...


def load_engine_factory(reference: str) -> Callable[[], Engine]:
    """Resolve a ``module:attribute`` reference to an engine factory."""
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"engine factory must look like 'module:callable', got {reference!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"cannot import engine module {module_name!r}: {exc}") from exc
    target: object = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigError(f"{module_name!r} has no attribute {attr!r}") from exc
    if not callable(target):
        raise ConfigError(f"engine factory {reference!r} is not callable")
    return target
