"""Error taxonomy for the kindls server."""

from __future__ import annotations


class KindLsError(RuntimeError):
    pass


class EngineFailure(KindLsError):
    """The external engine raised or returned something unusable.

    Contained within a single analysis pass: the pass is abandoned and the
    diagnostics already shown in the editor stay as they are.
    """


class EngineProtocolError(EngineFailure):
    """The engine process broke the wire protocol (closed stream, bad frame)."""


class MergeConflict(KindLsError):
    """A file's definitions collide with names already owned by other files."""

    def __init__(self, uri: str, names: list[str], owners: dict[str, str]):
        super().__init__(
            f"{uri}: {len(names)} name(s) already defined elsewhere: {', '.join(names)}"
        )
        self.uri = uri
        self.names = names
        self.owners = owners


class ConfigError(KindLsError):
    pass


class NeverThrown(KindLsError):
    """Raised by never() when a supposedly unreachable branch is reached."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})
