from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from kindls.config import ServerConfig
from kindls.files import path_to_uri
from kindls.workspace import Workspace
from tests.engine_fixture import BOOL_SOURCE, ScriptedEngine


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def write_source(tmp_path: Path):
    def _write(name: str, text: str) -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path_to_uri(path)

    return _write


@pytest.fixture
def bool_workspace(tmp_path: Path, write_source, engine: ScriptedEngine) -> Workspace:
    write_source("Bool.fm", BOOL_SOURCE)
    state = Workspace(engine, ServerConfig(engine_thread=False))
    state.diagnostics_for(state.load([tmp_path]))
    return state
