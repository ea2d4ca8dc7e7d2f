from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Iterator, List, Mapping, Optional, Set

from slice_store import SliceStore


_LOGGER = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD_S = 0.8


class AutosaveScheduler:
    """Debounced write-back of every slice.

    Each `notify_changed` call replaces the pending timer, so a burst of
    mutations produces one flush of the latest state. The `loading` gate
    suppresses scheduling and flushing while a load or an import is in
    progress. Issued writes are never cancelled.
    """

    def __init__(
        self,
        store: SliceStore,
        snapshot: Callable[[], Mapping[str, Any]],
        *,
        delay_s: float = DEFAULT_QUIET_PERIOD_S,
    ):
        self._store = store
        self._snapshot = snapshot
        self._delay_s = max(0.0, float(delay_s))
        self._loading = False
        self._changed_while_loading = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: Set["asyncio.Task[List[str]]"] = set()
        self.flush_count = 0

    @property
    def delay_s(self) -> float:
        return self._delay_s

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def loading(self) -> bool:
        return self._loading

    @loading.setter
    def loading(self, value: bool) -> None:
        value = bool(value)
        if value == self._loading:
            return
        self._loading = value
        if value:
            # A change still waiting for its quiet period is written on reopen.
            if self._cancel_timer():
                self._changed_while_loading = True
            return

        if self._changed_while_loading:
            self._changed_while_loading = False
            self.notify_changed()

    @contextlib.contextmanager
    def suspended(self) -> Iterator[None]:
        previous = self._loading
        self.loading = True
        try:
            yield
        finally:
            self.loading = previous

    def notify_changed(self) -> None:
        if self._loading:
            self._changed_while_loading = True
            return

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay_s, self._on_quiet_period)

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def _on_quiet_period(self) -> None:
        self._timer = None
        if self._loading:
            return
        task = asyncio.get_running_loop().create_task(self._flush())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _flush(self) -> List[str]:
        state = dict(self._snapshot())
        keys = list(state)
        results = await asyncio.gather(
            *(self._store.set(k, state[k]) for k in keys), return_exceptions=True
        )

        failed: List[str] = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                _LOGGER.error("Auto-save failed for slice %s: %s", key, result)
                failed.append(key)

        self.flush_count += 1
        _LOGGER.debug(
            "Auto-save wrote %d slice(s), %d failed", len(keys) - len(failed), len(failed)
        )
        return failed

    async def flush_now(self) -> List[str]:
        """Write every slice immediately unless the gate is closed."""

        self._cancel_timer()
        if self._loading:
            return []
        return await self._flush()

    async def drain(self) -> None:
        """Wait for writes already issued by the timer."""

        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def aclose(self, *, flush: bool = True) -> None:
        had_pending = self._cancel_timer()
        if flush and had_pending and not self._loading:
            await self._flush()
        await self.drain()
