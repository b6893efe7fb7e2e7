from __future__ import annotations

from pathlib import Path
from typing import List, Optional
import logging
import sys

import typer
from lsprotocol.types import Diagnostic, DiagnosticSeverity

from kindls.config import resolve_config
from kindls.exceptions import ConfigError
from kindls.files import uri_to_path
from kindls.workspace import DiagnosticMap, Workspace, build_engine

app = typer.Typer(add_completion=False)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_SEVERITY_LABELS = {
    DiagnosticSeverity.Error: "error",
    DiagnosticSeverity.Warning: "warning",
    DiagnosticSeverity.Information: "info",
    DiagnosticSeverity.Hint: "hint",
}


def configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"unknown log level: {level}")
    # stdout carries the protocol when serving over stdio.
    logging.basicConfig(stream=sys.stderr, level=numeric, format=_LOG_FORMAT)


def _format_diagnostic(path: Path, diagnostic: Diagnostic) -> List[str]:
    start = diagnostic.range.start
    label = _SEVERITY_LABELS.get(diagnostic.severity, "error")
    head, *rest = diagnostic.message.rstrip("\n").splitlines() or [""]
    lines = [f"{path}:{start.line + 1}:{start.character + 1}: {label}: {head}"]
    lines.extend(f"    {line}" for line in rest)
    return lines


def render_diagnostics(updates: DiagnosticMap) -> List[str]:
    lines: List[str] = []
    for uri in sorted(updates):
        path = uri_to_path(uri)
        for diagnostic in updates[uri]:
            lines.extend(_format_diagnostic(path, diagnostic))
    return lines


def count_errors(updates: DiagnosticMap) -> int:
    return sum(
        1
        for diagnostics in updates.values()
        for diagnostic in diagnostics
        if diagnostic.severity in (None, DiagnosticSeverity.Error)
    )


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("warning", "--log-level", envvar="KINDLS_LOG_LEVEL"),
    config: Optional[Path] = typer.Option(
        None, "--config", help="Config file to use instead of <root>/kindls.toml."
    ),
) -> None:
    """Language server for Kind workspaces."""
    configure_logging(log_level)
    ctx.obj = {"config_path": config}


def _config_path(ctx: typer.Context) -> Optional[Path]:
    obj = ctx.obj
    if isinstance(obj, dict):
        return obj.get("config_path")
    return None


@app.command()
def serve(
    ctx: typer.Context,
    tcp: bool = typer.Option(False, "--tcp", help="Listen on TCP instead of stdio."),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(2087, "--port"),
) -> None:
    """Run the language server."""
    from kindls.server import server, start

    server.config_path = _config_path(ctx)
    if tcp:
        server.start_tcp(host, port)
    else:
        start()


@app.command()
def check(
    ctx: typer.Context,
    root: Path = typer.Argument(Path("."), help="Workspace root to load."),
    engine: Optional[str] = typer.Option(
        None, "--engine", help="Engine factory as module:callable (overrides config)."
    ),
) -> None:
    """Load a workspace, run one full pass and print its diagnostics."""
    options = {"engine": {"factory": engine}} if engine else None
    try:
        server_config = resolve_config(root, config_path=_config_path(ctx), options=options)
        checker = build_engine(server_config, root)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    state = Workspace(checker, server_config)
    try:
        outcome = state.load([root])
        updates = state.diagnostics_for(outcome)
    finally:
        close = getattr(checker, "close", None)
        if callable(close):
            close()
    if updates is None:
        typer.echo(f"analysis failed: {outcome.error}", err=True)
        raise typer.Exit(code=2)
    for line in render_diagnostics(updates):
        typer.echo(line)
    errors = count_errors(updates)
    typer.echo(f"{len(updates)} file(s) checked, {errors} error(s)", err=True)
    raise typer.Exit(code=1 if errors else 0)


if __name__ == "__main__":  # pragma: no cover
    app()  # pragma: no cover
