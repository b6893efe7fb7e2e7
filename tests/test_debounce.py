from __future__ import annotations

import asyncio

from kindls.debounce import DebounceScope, Debouncer


def _recorder():
    seen: list[tuple[str, object]] = []

    async def _callback(uri: str, event: object) -> None:
        seen.append((uri, event))

    return seen, _callback


def test_burst_on_one_file_delivers_last_event() -> None:
    seen, callback = _recorder()

    async def _run() -> Debouncer:
        debouncer = Debouncer(callback, delay_ms=20)
        for version in range(5):
            debouncer.schedule("a", version)
        await debouncer.flush()
        return debouncer

    debouncer = asyncio.run(_run())
    assert seen == [("a", 4)]
    assert debouncer.delivered == 1
    assert debouncer.dropped == 4


def test_per_file_scope_keeps_each_file() -> None:
    seen, callback = _recorder()

    async def _run() -> None:
        debouncer = Debouncer(callback, delay_ms=10)
        debouncer.schedule("a", 1)
        debouncer.schedule("b", 1)
        debouncer.schedule("a", 2)
        assert debouncer.pending() == ["a", "b"]
        await debouncer.flush()

    asyncio.run(_run())
    assert sorted(seen) == [("a", 2), ("b", 1)]


def test_workspace_scope_keeps_only_last_file() -> None:
    seen, callback = _recorder()

    async def _run() -> None:
        debouncer = Debouncer(callback, delay_ms=10, scope=DebounceScope.WORKSPACE)
        debouncer.schedule("a", 1)
        debouncer.schedule("b", 1)
        await debouncer.flush()

    asyncio.run(_run())
    assert seen == [("b", 1)]


def test_separate_bursts_are_delivered_separately() -> None:
    seen, callback = _recorder()

    async def _run() -> None:
        debouncer = Debouncer(callback, delay_ms=5)
        debouncer.schedule("a", 1)
        await asyncio.sleep(0.05)
        debouncer.schedule("a", 2)
        await debouncer.flush()

    asyncio.run(_run())
    assert seen == [("a", 1), ("a", 2)]


def test_running_delivery_is_not_cancelled() -> None:
    started = []
    finished = []

    async def _slow(uri: str, event: int) -> None:
        started.append(event)
        await asyncio.sleep(0.05)
        finished.append(event)

    async def _run() -> None:
        debouncer = Debouncer(_slow, delay_ms=1)
        debouncer.schedule("a", 1)
        await asyncio.sleep(0.02)
        assert started == [1]
        debouncer.schedule("a", 2)
        await debouncer.flush()

    asyncio.run(_run())
    assert finished == [1, 2]


def test_deliveries_never_overlap() -> None:
    active = 0
    peak = 0

    async def _callback(uri: str, event: int) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1

    async def _run() -> None:
        debouncer = Debouncer(_callback, delay_ms=1)
        for uri in ("a", "b", "c"):
            debouncer.schedule(uri, 0)
        await debouncer.flush()

    asyncio.run(_run())
    assert peak == 1


def test_failing_callback_does_not_stop_later_deliveries() -> None:
    seen = []

    async def _callback(uri: str, event: int) -> None:
        if event == 1:
            raise RuntimeError("boom")
        seen.append(event)

    async def _run() -> None:
        debouncer = Debouncer(_callback, delay_ms=1)
        debouncer.schedule("a", 1)
        debouncer.schedule("b", 2)
        await debouncer.flush()

    asyncio.run(_run())
    assert seen == [2]


def test_close_drops_pending_events() -> None:
    seen, callback = _recorder()

    async def _run() -> None:
        debouncer = Debouncer(callback, delay_ms=1000)
        debouncer.schedule("a", 1)
        await debouncer.close()
        assert debouncer.pending() == []

    asyncio.run(_run())
    assert seen == []


def test_cancel_drops_waiting_event() -> None:
    seen, callback = _recorder()

    async def _run() -> None:
        debouncer = Debouncer(callback, delay_ms=10)
        debouncer.schedule("a", 1)
        debouncer.schedule("b", 1)
        assert debouncer.cancel("a") is True
        assert debouncer.cancel("a") is False
        await debouncer.flush()

    asyncio.run(_run())
    assert seen == [("b", 1)]
