from __future__ import annotations

from pathlib import Path

import pytest

from kindls.config import (
    DEFAULT_EXTENSIONS,
    ServerConfig,
    build_server_config,
    options_payload,
    resolve_config,
)
from kindls.debounce import DebounceScope
from kindls.engine import load_engine_factory
from kindls.exceptions import ConfigError


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = resolve_config(tmp_path)
    assert config == ServerConfig()
    assert config.debounce_ms == 150
    assert config.debounce_scope is DebounceScope.PER_FILE
    assert config.extensions == DEFAULT_EXTENSIONS
    assert config.engine.factory is None


def test_reads_server_and_engine_tables(tmp_path: Path) -> None:
    (tmp_path / "kindls.toml").write_text(
        "\n".join(
            [
                "[server]",
                "debounce_ms = 40",
                'debounce_scope = "workspace"',
                'extensions = ["kind", ".fm"]',
                'exclude = "build, node_modules"',
                "engine_thread = false",
                "",
                "[engine]",
                'command = "kind-engine --stdio"',
                "timeout_ms = 500",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    config = resolve_config(tmp_path)
    assert config.debounce_ms == 40
    assert config.debounce_scope is DebounceScope.WORKSPACE
    assert config.extensions == (".kind", ".fm")
    assert config.exclude == ("build", "node_modules")
    assert config.engine_thread is False
    assert config.engine.command == ("kind-engine", "--stdio")
    assert config.engine.timeout_ms == 500


def test_initialization_options_override_file(tmp_path: Path) -> None:
    (tmp_path / "kindls.toml").write_text(
        '[server]\ndebounce_ms = 40\n[engine]\nfactory = "a:b"\n', encoding="utf-8"
    )
    config = resolve_config(
        tmp_path,
        options={"debounceMs": 0, "logLevel": "debug", "engine": {"factory": "c:d"}},
    )
    assert config.debounce_ms == 0
    assert config.log_level == "debug"
    assert config.engine.factory == "c:d"


def test_invalid_toml_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "kindls.toml").write_text("[server\n", encoding="utf-8")
    assert resolve_config(tmp_path) == ServerConfig()


@pytest.mark.parametrize(
    "section",
    [
        {"debounce_ms": -1},
        {"debounce_ms": "soon"},
        {"debounce_ms": True},
        {"debounce_scope": "galaxy"},
    ],
)
def test_bad_server_values_raise(section: dict) -> None:
    with pytest.raises(ConfigError):
        build_server_config(section)


def test_bad_engine_command_raises() -> None:
    with pytest.raises(ConfigError):
        build_server_config({}, {"command": 5})


def test_options_payload_ignores_non_mappings() -> None:
    assert options_payload(None) == {}
    assert options_payload(["x"]) == {}
    assert options_payload({"engineThread": False, "source": "K"}) == {
        "engine_thread": False,
        "source": "K",
    }


def test_load_engine_factory_resolves_callable() -> None:
    factory = load_engine_factory("tests.engine_fixture:make_engine")
    assert factory().parse_calls == []


@pytest.mark.parametrize(
    "reference",
    ["tests.engine_fixture", "no_such_module_xyz:make", "tests.engine_fixture:missing", "tests.engine_fixture:BOOL_SOURCE"],
)
def test_load_engine_factory_rejects_bad_references(reference: str) -> None:
    with pytest.raises(ConfigError):
        load_engine_factory(reference)
