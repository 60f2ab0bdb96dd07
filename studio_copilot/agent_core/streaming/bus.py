"""In-memory progress relay.

``StreamBus`` keeps, per key (a workflow id or a project id), an append-only
sequence of timestamped text chunks with monotonically increasing indices.
Clients poll with a cursor (``get_since`` / ``wait_for``) or subscribe.

Guarantees
----------

- Indices start at 1 and increase by one per ``push`` on that key; trimming
  the oldest chunks beyond ``max_per_key`` never renumbers the rest.
- ``get_since`` is a pure read.
- ``wait_for`` blocks only the awaiting coroutine. Each key owns a
  notification ``asyncio.Event`` that ``push`` sets and replaces, so waiters on
  other keys and concurrent pushes are never serialized behind a waiter.
- Keys idle for longer than ``max_idle_seconds`` are dropped together with
  their subscriptions by ``sweep`` (run periodically after ``start``).

Nothing here is durable: the bus is a best-effort relay.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from pydantic import Field

from ..schemas.base import BaseSchema

logger = logging.getLogger(__name__)

MAX_PER_KEY = 200
MAX_IDLE_SECONDS = 60 * 60
CLEANUP_INTERVAL_SECONDS = 5 * 60

ChunkHandler = Callable[["StreamChunk"], None]


class StreamChunk(BaseSchema):
    i: int = Field(description="Monotonic index of the chunk within its key")
    t: int = Field(description="Wall-clock timestamp in epoch milliseconds")
    text: str


class StreamSlice(BaseSchema):
    cursor: int
    chunks: List[StreamChunk] = Field(default_factory=list)


@dataclass
class _KeyState:
    chunks: Deque[StreamChunk]
    last_index: int = 0
    touched_at: float = 0.0
    handlers: Dict[int, ChunkHandler] = field(default_factory=dict)
    signal: asyncio.Event = field(default_factory=asyncio.Event)


class StreamBus:
    """Per-key chunk log with cursor replay, subscriptions and idle eviction.

    Args:
        max_per_key: Number of most recent chunks retained per key.
        max_idle_seconds: Keys with no push for this long are evicted by ``sweep``.
        cleanup_interval_seconds: Period of the background sweep started by ``start``.
        clock: Monotonic clock used for idleness, injectable for tests.
    """

    def __init__(
        self,
        *,
        max_per_key: int = MAX_PER_KEY,
        max_idle_seconds: float = MAX_IDLE_SECONDS,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_per_key = max_per_key
        self._max_idle = max_idle_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._keys: Dict[str, _KeyState] = {}
        self._handler_ids = itertools.count(1)
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    def _state(self, key: str) -> _KeyState:
        state = self._keys.get(key)
        if state is None:
            state = _KeyState(chunks=deque(maxlen=self._max_per_key), touched_at=self._clock())
            self._keys[key] = state
        return state

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def push(self, key: str, text: str) -> int:
        state = self._state(key)
        state.last_index += 1
        chunk = StreamChunk(i=state.last_index, t=int(time.time() * 1000), text=text)
        state.chunks.append(chunk)
        state.touched_at = self._clock()

        signal, state.signal = state.signal, asyncio.Event()
        signal.set()

        for handler in list(state.handlers.values()):
            try:
                handler(chunk)
            except Exception:
                logger.exception("Stream handler failed for key=%s", key)
        return chunk.i

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_since(self, key: str, cursor: int) -> StreamSlice:
        state = self._keys.get(key)
        if state is None or not state.chunks:
            return StreamSlice(cursor=cursor)
        fresh = [c for c in state.chunks if c.i > cursor]
        return StreamSlice(cursor=state.last_index, chunks=fresh)

    def subscribe(self, key: str, handler: ChunkHandler) -> Callable[[], None]:
        """Register ``handler`` for future chunks on ``key``; returns an unsubscribe callable."""
        state = self._state(key)
        handler_id = next(self._handler_ids)
        state.handlers[handler_id] = handler

        def unsubscribe() -> None:
            current = self._keys.get(key)
            if current is not None:
                current.handlers.pop(handler_id, None)

        return unsubscribe

    async def wait_for(self, key: str, cursor: int, timeout_ms: int) -> StreamSlice:
        existing = self.get_since(key, cursor)
        if existing.chunks or timeout_ms <= 0:
            return existing

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000.0
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            signal = self._state(key).signal
            try:
                await asyncio.wait_for(signal.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            latest = self.get_since(key, cursor)
            if latest.chunks:
                return latest
        return self.get_since(key, cursor)

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Drop keys idle for longer than ``max_idle_seconds``; returns the evicted keys."""
        now = self._clock() if now is None else now
        evicted = [key for key, state in self._keys.items() if now - state.touched_at > self._max_idle]
        for key in evicted:
            state = self._keys.pop(key)
            state.handlers.clear()
            state.signal.set()
            logger.info("Cleaned idle stream key=%s", key)
        return evicted

    def keys(self) -> List[str]:
        return list(self._keys)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.sweep()

    def start(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
