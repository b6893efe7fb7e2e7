from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, TypeVar

from lsprotocol.types import (
    COMPLETION_ITEM_RESOLVE,
    INITIALIZE,
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DEFINITION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_HOVER,
    CompletionItem,
    CompletionList,
    CompletionOptions,
    CompletionParams,
    DefinitionParams,
    Diagnostic,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    Hover,
    HoverParams,
    InitializeParams,
    InitializedParams,
    Location,
    MessageType,
    PublishDiagnosticsParams,
    ShowMessageParams,
    TextDocumentSyncKind,
)
from pygls.lsp.server import LanguageServer

from kindls import __version__
from kindls.analyzer import AnalysisOutcome
from kindls.config import ServerConfig, resolve_config
from kindls.debounce import Debouncer
from kindls.documents import SourceFile
from kindls.exceptions import ConfigError
from kindls.files import uri_to_path
from kindls.workspace import DiagnosticMap, Workspace, build_engine

logger = logging.getLogger(__name__)

RECHECK_COMMAND = "kind.recheckWorkspace"

T = TypeVar("T")


def apply_log_level(raw: object) -> None:
    if not isinstance(raw, str) or not raw:
        return
    level = getattr(logging, raw.upper(), None)
    if isinstance(level, int):
        logging.getLogger("kindls").setLevel(level)


def count_diagnostics(updates: dict[str, list[Diagnostic]]) -> int:
    return sum(len(items) for items in updates.values())


def workspace_roots(params: InitializeParams) -> list[Path]:
    roots: list[Path] = []
    for folder in params.workspace_folders or []:
        roots.append(uri_to_path(folder.uri))
    if not roots and params.root_uri:
        roots.append(uri_to_path(params.root_uri))
    if not roots and params.root_path:
        roots.append(Path(params.root_path))
    if not roots:
        roots.append(Path.cwd())
    return roots


class KindLanguageServer(LanguageServer):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.state: Workspace | None = None
        self.config = ServerConfig()
        self.roots: list[Path] = []
        self.config_path: Path | None = None
        self.debouncer: Debouncer[SourceFile] | None = None
        self._executor: ThreadPoolExecutor | None = None

    def setup(self, state: Workspace, roots: list[Path] | None = None) -> None:
        self.state = state
        self.config = state.config
        self.roots = list(roots or [])
        self.debouncer = Debouncer(
            self.on_quiet,
            delay_ms=self.config.debounce_ms,
            scope=self.config.debounce_scope,
        )
        if self.config.engine_thread and self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kindls-engine")

    async def run_engine(self, fn: Callable[..., T], *args) -> T:
        """Run a blocking engine call off the event loop when configured to."""
        if self._executor is None:
            return fn(*args)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def publish(self, updates: DiagnosticMap | None, *, versions: dict[str, int] | None = None) -> None:
        if updates is None:
            return
        versions = versions or {}
        for uri, diagnostics in updates.items():
            self.text_document_publish_diagnostics(
                PublishDiagnosticsParams(
                    uri=uri,
                    diagnostics=diagnostics,
                    version=versions.get(uri),
                )
            )

    async def on_quiet(self, uri: str, doc: SourceFile) -> None:
        state = self.state
        if state is None:
            return
        logger.debug("analyzing %s (version %d)", uri, doc.version)
        outcome: AnalysisOutcome = await self.run_engine(state.analyze, uri, doc.text)
        versions = {uri: doc.version} if state.documents.is_open(uri) else {}
        self.publish(state.diagnostics_for(outcome), versions=versions)

    async def startup(self) -> int:
        state = self.state
        if state is None or self.debouncer is None:
            return 0
        async with self.debouncer.lock:
            outcome = await self.run_engine(state.load, self.roots)
            updates = state.diagnostics_for(outcome)
            self.publish(updates)
        return len(updates or {})

    def schedule(self, doc: SourceFile) -> None:
        if self.debouncer is None:
            return
        self.debouncer.schedule(doc.uri, doc)

    def shutdown_state(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        close = getattr(self.state.engine if self.state else None, "close", None)
        if callable(close):
            close()


server = KindLanguageServer(
    "kindls",
    __version__,
    text_document_sync_kind=TextDocumentSyncKind.Incremental,
)


@server.feature(INITIALIZE)
def initialize(ls: KindLanguageServer, params: InitializeParams) -> None:
    roots = workspace_roots(params)
    options = params.initialization_options
    apply_log_level(options.get("logLevel") if isinstance(options, dict) else None)
    try:
        config = resolve_config(roots[0], config_path=ls.config_path, options=options)
        engine = build_engine(config, roots[0])
    except ConfigError as exc:
        logger.error("kindls is not configured: %s", exc)
        ls.window_show_message(ShowMessageParams(type=MessageType.Error, message=f"kindls: {exc}"))
        return
    apply_log_level(config.log_level)
    ls.setup(Workspace(engine, config), roots)
    logger.info("kindls %s serving %s", __version__, ", ".join(map(str, roots)))


@server.feature(INITIALIZED)
async def initialized(ls: KindLanguageServer, params: InitializedParams) -> None:
    await ls.startup()


@server.feature(SHUTDOWN)
def shutdown(ls: KindLanguageServer, params: None) -> None:
    ls.shutdown_state()


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: KindLanguageServer, params: DidOpenTextDocumentParams) -> None:
    if ls.state is None:
        return
    item = params.text_document
    ls.schedule(ls.state.open(item.uri, item.text, item.version))


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: KindLanguageServer, params: DidChangeTextDocumentParams) -> None:
    if ls.state is None:
        return
    uri = params.text_document.uri
    document = ls.workspace.get_text_document(uri)
    ls.schedule(ls.state.change(uri, document.source, params.text_document.version))


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: KindLanguageServer, params: DidCloseTextDocumentParams) -> None:
    if ls.state is None:
        return
    ls.state.close(params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: KindLanguageServer, params: DidSaveTextDocumentParams) -> None:
    logger.debug("saved %s", params.text_document.uri)


@server.feature(TEXT_DOCUMENT_HOVER)
def hover(ls: KindLanguageServer, params: HoverParams) -> Hover | None:
    if ls.state is None:
        return None
    return ls.state.hover(params.text_document.uri, params.position)


@server.feature(TEXT_DOCUMENT_DEFINITION)
def definition(ls: KindLanguageServer, params: DefinitionParams) -> list[Location] | None:
    if ls.state is None:
        return None
    return ls.state.definition(params.text_document.uri, params.position)


@server.feature(TEXT_DOCUMENT_COMPLETION, CompletionOptions(resolve_provider=True))
def completion(ls: KindLanguageServer, params: CompletionParams) -> CompletionList:
    items = ls.state.completions() if ls.state is not None else []
    return CompletionList(is_incomplete=False, items=items)


@server.feature(COMPLETION_ITEM_RESOLVE)
def completion_resolve(ls: KindLanguageServer, item: CompletionItem) -> CompletionItem:
    return item


@server.command(RECHECK_COMMAND)
async def recheck_workspace(ls: KindLanguageServer, *args) -> dict:
    if ls.state is None:
        return {"exit_code": 2, "errors": ["kindls is not configured"]}
    files = await ls.startup()
    return {"exit_code": 0, "files": files, "diagnostics": count_diagnostics(ls.state.published)}


def start(start_fn: Callable[[], None] | None = None) -> None:
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
