"""Engine binding that talks to an external checker process.

Messages are JSON-RPC 2.0 objects framed with ``Content-Length`` headers on
the engine's stdin/stdout, the same framing LSP uses. The process is started
on first use and restarted after a transport failure.
"""

from __future__ import annotations

import json
import logging
import select
import subprocess
import threading
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from kindls.engine import (
    GlobalDefs,
    JSONObject,
    JSONValue,
    ParseFailure,
    ParseResult,
    ParseSuccess,
    SynthesisResult,
)
from kindls.exceptions import EngineFailure, EngineProtocolError
from kindls.schema import (
    DefinitionDTO,
    ParseRequest,
    ParseResponse,
    SynthesisRequest,
    SynthesisResponse,
)

logger = logging.getLogger(__name__)

PARSE_METHOD = "kind/parse"
SYNTHESIZE_METHOD = "kind/synthesize"


def _wait_readable(stream, deadline_ns: int) -> None:
    """Block until the engine's stdout has data or the request deadline passes."""
    read = getattr(stream, "read", None)
    fileno = getattr(stream, "fileno", None)
    if fileno is None:
        if read is None:
            raise EngineProtocolError("engine stream does not expose fileno")
        if time.monotonic_ns() >= deadline_ns:
            raise EngineProtocolError("engine response timed out")
        return
    try:
        fd = fileno()
    except (OSError, ValueError) as exc:
        if read is None:
            raise EngineProtocolError("engine stream fileno failed") from exc
        if time.monotonic_ns() >= deadline_ns:
            raise EngineProtocolError("engine response timed out")
        return
    remaining_ns = deadline_ns - time.monotonic_ns()
    timeout = max(0.0, remaining_ns / 1_000_000_000)
    ready, _, _ = select.select([fd], [], [], timeout)
    if not ready:
        raise EngineProtocolError("engine response timed out")


def _read_exact(stream, length: int, deadline_ns: int) -> bytes:
    """Read exactly ``length`` bytes of an engine message body."""
    body = bytearray()
    while len(body) < length:
        _wait_readable(stream, deadline_ns)
        chunk = stream.read(length - len(body))
        if not chunk:
            raise EngineProtocolError("engine stream closed")
        body.extend(chunk)
    return bytes(body)


def read_message(stream, deadline_ns: int) -> JSONObject:
    """Read one Content-Length framed JSON-RPC message sent by the engine."""
    header = b""
    while b"\r\n\r\n" not in header:
        _wait_readable(stream, deadline_ns)
        chunk = stream.read(1)
        if not chunk:
            raise EngineProtocolError("engine stream closed")
        header += chunk
    head, _, rest = header.partition(b"\r\n\r\n")
    length = 0
    for line in head.split(b"\r\n"):
        if line.lower().startswith(b"content-length:"):
            try:
                length = int(line.split(b":", 1)[1].strip())
            except ValueError as exc:
                raise EngineProtocolError("invalid engine Content-Length") from exc
            break
    if length <= 0:
        raise EngineProtocolError("invalid engine Content-Length")
    body = rest
    if len(body) < length:
        body += _read_exact(stream, length - len(body), deadline_ns)
    try:
        message = json.loads(body[:length].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EngineProtocolError(f"engine sent malformed JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise EngineProtocolError("engine message is not a JSON object")
    return message


def write_message(stream, message: JSONObject) -> None:
    """Frame ``message`` and send it to the engine's stdin."""
    payload = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode("utf-8")
    stream.write(header + payload)
    stream.flush()


def _read_response(stream, request_id: int, deadline_ns: int) -> JSONObject:
    """Return the engine's reply to ``request_id``, skipping notifications and late replies."""
    while True:
        message = read_message(stream, deadline_ns)
        if "id" not in message:
            logger.debug("engine notification: %s", message.get("method"))
            continue
        if message.get("id") == request_id:
            return message
        logger.debug("discarding engine response for stale id %r", message.get("id"))


class SubprocessEngine:
    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_ms: int = 30_000,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        if not command:
            raise EngineFailure("engine command is empty")
        self.command = list(command)
        self.cwd = cwd
        self.timeout_ms = timeout_ms
        self._process_factory = process_factory
        self._proc: subprocess.Popen | None = None
        self._next_id = 0
        self._lock = threading.Lock()

    def _process(self) -> subprocess.Popen:
        if self._proc is None:
            logger.info("starting engine: %s", " ".join(self.command))
            try:
                self._proc = self._process_factory(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    cwd=str(self.cwd) if self.cwd is not None else None,
                    bufsize=0,
                )
            except OSError as exc:
                raise EngineFailure(f"cannot start engine {self.command[0]!r}: {exc}") from exc
        return self._proc

    def _discard_process(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        try:
            proc.kill()
        except (AttributeError, OSError):
            pass

    def request(self, method: str, params: JSONObject) -> JSONValue:
        with self._lock:
            proc = self._process()
            assert proc.stdin is not None
            assert proc.stdout is not None
            self._next_id += 1
            request_id = self._next_id
            deadline_ns = time.monotonic_ns() + self.timeout_ms * 1_000_000
            try:
                write_message(
                    proc.stdin,
                    {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params},
                )
                response = _read_response(proc.stdout, request_id, deadline_ns)
            except (EngineProtocolError, OSError) as exc:
                self._discard_process()
                if isinstance(exc, EngineProtocolError):
                    raise
                raise EngineProtocolError(f"engine pipe failed: {exc}") from exc
        if response.get("error"):
            raise EngineFailure(f"engine error for {method}: {response['error']}")
        return response.get("result")

    def parse(self, uri: str, text: str) -> ParseResult:
        raw = self.request(PARSE_METHOD, ParseRequest(uri=uri, text=text).model_dump())
        try:
            response = ParseResponse.model_validate(raw)
        except ValidationError as exc:
            raise EngineProtocolError(f"invalid parse response: {exc}") from exc
        if not response.ok:
            return ParseFailure(offset=response.offset, message=response.message)
        return ParseSuccess(defs={dto.name: dto.to_definition() for dto in response.defs})

    def synthesize(self, names: Sequence[str], defs: GlobalDefs) -> SynthesisResult:
        request = SynthesisRequest(
            names=list(names),
            defs=[DefinitionDTO.from_definition(definition) for definition in defs.values()],
        )
        raw = self.request(SYNTHESIZE_METHOD, request.model_dump())
        try:
            response = SynthesisResponse.model_validate(raw)
        except ValidationError as exc:
            raise EngineProtocolError(f"invalid synthesis response: {exc}") from exc
        return SynthesisResult(
            defs={dto.name: dto.to_definition() for dto in response.defs},
            report=tuple(dto.to_record() for dto in response.report),
        )

    def close(self) -> None:
        with self._lock:
            proc = self._proc
            if proc is None:
                return
            try:
                assert proc.stdin is not None
                write_message(proc.stdin, {"jsonrpc": "2.0", "method": "exit"})
                proc.communicate(timeout=1.0)
            except (OSError, ValueError, subprocess.TimeoutExpired):
                self._discard_process()
                return
            self._proc = None
