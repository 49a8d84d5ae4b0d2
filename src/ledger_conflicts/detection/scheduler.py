"""Cooperative yield points for chunked computation.

A detection pass calls ``await scheduler.pause()`` between chunks so other
tasks on the event loop (user input, resolution calls) keep running.
"""

import asyncio
from typing import Protocol


class Scheduler(Protocol):
    """Something a long computation can yield to between units of work."""

    async def pause(self) -> None: ...


class EventLoopScheduler:
    """Yield to the event loop for one iteration."""

    async def pause(self) -> None:
        await asyncio.sleep(0)


class FrameScheduler:
    """Yield for a fixed frame interval (default ~60 frames per second)."""

    def __init__(self, frame_seconds: float = 1 / 60):
        self.frame_seconds = frame_seconds

    async def pause(self) -> None:
        await asyncio.sleep(self.frame_seconds)
