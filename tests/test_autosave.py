import asyncio
import logging

from autosave import AutosaveScheduler
from slice_store import MemoryBackend, SliceStore

DELAY_S = 0.02


class _RecordingBackend(MemoryBackend):
    def __init__(self, fail_keys=()):
        super().__init__()
        self.fail_keys = set(fail_keys)
        self.writes = []

    async def write(self, key, value):
        if key in self.fail_keys:
            raise OSError(f"cannot write {key}")
        self.writes.append((key, value))
        await super().write(key, value)


def _make(state, backend=None):
    backend = backend or _RecordingBackend()
    scheduler = AutosaveScheduler(
        SliceStore(backend), lambda: dict(state), delay_s=DELAY_S
    )
    return scheduler, backend


async def _settle(scheduler):
    await asyncio.sleep(DELAY_S * 5)
    await scheduler.drain()


def test_burst_of_mutations_writes_each_slice_once_with_final_state():
    state = {"entries": [], "scenarios": []}

    async def scenario():
        scheduler, backend = _make(state)
        for i in range(10):
            state["entries"] = [{"id": str(n)} for n in range(i + 1)]
            scheduler.notify_changed()
        await _settle(scheduler)
        return scheduler, backend

    scheduler, backend = asyncio.run(scenario())

    assert scheduler.flush_count == 1
    assert sorted(k for k, _ in backend.writes) == ["entries", "scenarios"]
    assert backend.dump()["entries"] == [{"id": str(n)} for n in range(10)]


def test_mutation_resets_quiet_period():
    state = {"entries": []}

    async def scenario():
        backend = _RecordingBackend()
        scheduler = AutosaveScheduler(
            SliceStore(backend), lambda: dict(state), delay_s=0.2
        )
        scheduler.notify_changed()
        await asyncio.sleep(0.1)
        scheduler.notify_changed()
        # Past the first deadline, before the rescheduled one.
        await asyncio.sleep(0.15)
        written_early = list(backend.writes)
        await asyncio.sleep(0.3)
        await scheduler.drain()
        return written_early, scheduler

    written_early, scheduler = asyncio.run(scenario())

    assert written_early == []
    assert scheduler.flush_count == 1


def test_separate_quiet_periods_flush_separately():
    state = {"entries": []}

    async def scenario():
        scheduler, _ = _make(state)
        scheduler.notify_changed()
        await _settle(scheduler)
        scheduler.notify_changed()
        await _settle(scheduler)
        return scheduler

    assert asyncio.run(scenario()).flush_count == 2


def test_gate_suppresses_writes_and_reschedules_on_reopen():
    state = {"entries": []}

    async def scenario():
        scheduler, backend = _make(state)
        with scheduler.suspended():
            scheduler.notify_changed()
            assert scheduler.loading is True
            assert scheduler.pending is False
            await _settle(scheduler)
            gated_writes = list(backend.writes)
        assert scheduler.loading is False
        assert scheduler.pending is True
        await _settle(scheduler)
        return gated_writes, backend

    gated_writes, backend = asyncio.run(scenario())

    assert gated_writes == []
    assert [k for k, _ in backend.writes] == ["entries"]


def test_closing_gate_defers_pending_change_until_reopen():
    state = {"entries": [{"id": "unsaved"}]}

    async def scenario():
        scheduler, backend = _make(state)
        scheduler.notify_changed()
        scheduler.loading = True
        assert scheduler.pending is False
        await _settle(scheduler)
        gated_writes = list(backend.writes)
        scheduler.loading = False
        assert scheduler.pending is True
        await _settle(scheduler)
        return gated_writes, backend

    gated_writes, backend = asyncio.run(scenario())

    assert gated_writes == []
    assert backend.dump() == {"entries": [{"id": "unsaved"}]}


def test_aclose_writes_change_deferred_by_gate():
    state = {"entries": [{"id": "unsaved"}]}

    async def scenario():
        scheduler, backend = _make(state)
        scheduler.notify_changed()
        with scheduler.suspended():
            pass
        await scheduler.aclose()
        return backend

    assert asyncio.run(scenario()).dump() == {"entries": [{"id": "unsaved"}]}


def test_reopening_gate_without_changes_does_not_write():
    state = {"entries": []}

    async def scenario():
        scheduler, backend = _make(state)
        with scheduler.suspended():
            pass
        await _settle(scheduler)
        return backend

    assert asyncio.run(scenario()).writes == []


def test_failed_slice_is_logged_and_others_still_written(caplog):
    state = {"entries": [{"id": "1"}], "styles": {}, "engines": []}
    backend = _RecordingBackend(fail_keys={"styles"})

    async def scenario():
        scheduler, _ = _make(state, backend)
        failed = await scheduler.flush_now()
        return failed

    with caplog.at_level(logging.ERROR, logger="autosave"):
        failed = asyncio.run(scenario())

    assert failed == ["styles"]
    assert sorted(k for k, _ in backend.writes) == ["engines", "entries"]
    assert "styles" in caplog.text


def test_flush_now_honours_gate():
    state = {"entries": []}

    async def scenario():
        scheduler, backend = _make(state)
        with scheduler.suspended():
            await scheduler.flush_now()
        return backend

    assert asyncio.run(scenario()).writes == []


def test_aclose_flushes_pending_change():
    state = {"entries": [{"id": "last"}]}

    async def scenario():
        scheduler, backend = _make(state)
        scheduler.notify_changed()
        await scheduler.aclose()
        return scheduler, backend

    scheduler, backend = asyncio.run(scenario())

    assert scheduler.pending is False
    assert backend.dump() == {"entries": [{"id": "last"}]}


def test_aclose_without_pending_change_does_not_write():
    async def scenario():
        scheduler, backend = _make({"entries": []})
        await scheduler.aclose()
        return backend

    assert asyncio.run(scenario()).writes == []
