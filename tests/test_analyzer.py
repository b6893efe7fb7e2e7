from __future__ import annotations

import pytest

from kindls.analyzer import IncrementalAnalyzer, OutcomeKind
from kindls.definitions import DefinitionStore
from kindls.exceptions import NeverThrown
from tests.engine_fixture import BOOL_SOURCE, ScriptedEngine


def _analyzer(engine: ScriptedEngine) -> IncrementalAnalyzer:
    return IncrementalAnalyzer(engine, DefinitionStore())


def test_run_synthesizes_only_the_changed_file_roots(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    analyzer.run("bool", BOOL_SOURCE)
    outcome = analyzer.run("not", "Bool.not(a: Bool): Bool = a\n")
    assert outcome.kind is OutcomeKind.SYNTHESIZED
    assert outcome.roots == ("Bool.not",)
    assert engine.synth_calls[-1] == ["Bool.not"]
    assert outcome.report == ()
    assert analyzer.synth_defs["Bool.not"].signature == "(a: Bool) -> Bool"


def test_parse_failure_leaves_tables_alone(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    analyzer.run("bool", BOOL_SOURCE)
    before = analyzer.store.global_defs
    outcome = analyzer.run("bool", "type Bool { true, false }\n???")
    assert outcome.kind is OutcomeKind.PARSE_ERROR
    assert outcome.parse_error.message == "Unexpected token."
    assert outcome.parse_error.offset == 26
    assert analyzer.store.global_defs is before
    assert len(engine.synth_calls) == 1


def test_report_collects_undefined_reference(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    analyzer.run("bool", BOOL_SOURCE)
    outcome = analyzer.run("not", "Bool.not(a: Bool): bool = a")
    assert [record.message for record in outcome.report] == ["Undefined reference: bool"]
    (record,) = outcome.report
    assert (record.file, record.from_offset, record.upto_offset) == ("not", 19, 23)


def test_synthesis_crash_is_engine_failure(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    analyzer.run("bool", BOOL_SOURCE)
    previous = analyzer.synth_defs
    engine.fail_synthesis = True
    outcome = analyzer.run("not", "Bool.not(a: Bool): Bool = a")
    assert outcome.kind is OutcomeKind.ENGINE_FAILURE
    assert "unhandled case" in outcome.error
    assert analyzer.synth_defs is previous
    # The parse-level table already carries the new definition.
    assert "Bool.not" in analyzer.store.global_defs


def test_parser_crash_is_engine_failure(engine: ScriptedEngine) -> None:
    engine.fail_parse = True
    outcome = _analyzer(engine).run("bool", BOOL_SOURCE)
    assert outcome.kind is OutcomeKind.ENGINE_FAILURE
    assert outcome.error == "RuntimeError: parser crashed"


def test_unknown_parse_result_is_rejected() -> None:
    class _Broken(ScriptedEngine):
        def parse(self, uri, text):
            return {"defs": {}}

    analyzer = _analyzer(_Broken())
    with pytest.raises(NeverThrown):
        analyzer._parse("x", "")


def test_rebuild_parses_everything_then_one_full_pass(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    outcome = analyzer.rebuild(
        {
            "bool": BOOL_SOURCE,
            "broken": "@@@",
            "not": "Bool.not(a: Bool): Bool = a",
        }
    )
    assert engine.parse_calls == ["bool", "broken", "not"]
    assert len(engine.synth_calls) == 1
    assert sorted(engine.synth_calls[0]) == ["Bool", "Bool.false", "Bool.not", "Bool.true"]
    assert outcome.kind is OutcomeKind.SYNTHESIZED
    assert outcome.uri is None
    assert list(outcome.parse_failures) == ["broken"]


def test_run_full_accepts_explicit_names(engine: ScriptedEngine) -> None:
    analyzer = _analyzer(engine)
    analyzer.rebuild({"bool": BOOL_SOURCE})
    outcome = analyzer.run_full(["Bool"])
    assert outcome.roots == ("Bool",)
    assert analyzer.synth_defs["Bool"].signature == "Type"
