# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Progress reporting for pipeline runs.

The sink is fire-and-forget: a callback that raises is logged and ignored.
Within a stage, percentages never go down, and every stage reaches 100
before the next one starts. Once a run fails, nothing more is emitted.
"""

import asyncio
from typing import AsyncIterator, Callable, Optional

import structlog

from pocketsync.models import ProgressStage, ProgressUpdate

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressQueue:
    """
    Progress sink a UI task can consume with `async for`.

    The pipeline is the only producer; iteration ends when the run finishes.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def __call__(self, update: ProgressUpdate) -> None:
        if not self._closed:
            self._queue.put_nowait(update)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressUpdate]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class ProgressTracker:
    """Enforces stage ordering and monotonic percentages for one run."""

    def __init__(self, sink: Optional[ProgressCallback] = None):
        self._sink = sink
        self._stage: ProgressStage | None = None
        self._percent = 0
        self._halted = False

    @property
    def stage(self) -> ProgressStage | None:
        return self._stage

    def _emit(self, percent: int, message: str) -> None:
        if self._sink is None or self._halted:
            return
        update = ProgressUpdate(stage=self._stage, percent=percent, message=message)
        try:
            self._sink(update)
        except Exception as e:
            logger.warning(
                "progress_callback_failed",
                stage=self._stage.value,
                error_type=type(e).__name__,
            )

    def start(self, stage: ProgressStage, message: str) -> None:
        """Begin a stage at 0%, completing the previous one first."""
        if self._halted:
            return
        if self._stage is not None and self._percent < 100:
            self.complete(f"{self._stage.value} complete")
        self._stage = stage
        self._percent = 0
        self._emit(0, message)

    def advance(self, percent: int, message: str) -> None:
        """Report progress inside the current stage; never moves backwards."""
        if self._halted or self._stage is None:
            return
        percent = max(self._percent, min(100, int(percent)))
        if percent == self._percent:
            return
        self._percent = percent
        self._emit(percent, message)

    def complete(self, message: str) -> None:
        """Finish the current stage at 100%."""
        if self._halted or self._stage is None or self._percent >= 100:
            return
        self._percent = 100
        self._emit(100, message)

    def halt(self) -> None:
        """Stop emitting; used when a run fails."""
        self._halted = True

    def close(self) -> None:
        """End of run: lets a ProgressQueue consumer stop iterating."""
        if isinstance(self._sink, ProgressQueue):
            self._sink.close()
