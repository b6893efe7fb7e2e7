"""Invariant markers for kindls."""

from __future__ import annotations

from typing import NoReturn, TypeVar

from kindls.exceptions import NeverThrown

T = TypeVar("T")


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The keyword payload is attached to the raised exception so the log line
    carries enough context to reproduce the engine output that got here.
    """
    if env:
        detail = ", ".join(f"{key}={value!r}" for key, value in sorted(env.items()))
        raise NeverThrown(f"{reason or 'never() reached'} ({detail})", env=env)
    raise NeverThrown(reason or "never() reached")


def require_not_none(value: T | None, *, reason: str = "", **env: object) -> T:
    if value is None:
        never(reason or "required value is None", **env)
    return value
