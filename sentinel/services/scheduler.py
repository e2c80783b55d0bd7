"""Scheduler owning the named periodic tasks.

Each task has its own interval and, optionally, is aligned to absolute
multiples of that interval (the candle clock). Ticks spawn a run without
waiting for it, so a slow run never shifts the grid; a tick that finds the
previous run still in flight is skipped. A failing run is logged and
counted and never stops its loop or any other task.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sentinel_core.aggregator import seconds_until_boundary

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class PeriodicTask:
    """A named periodic job and its run statistics."""

    name: str
    func: TaskFunc
    interval: float
    align: bool = False
    align_offset: float = 0.0
    run_on_start: bool = False

    runs: int = 0
    failures: int = 0
    skips: int = 0
    last_error: str | None = None
    last_run_at: datetime | None = None
    running: bool = False
    _inflight: set = field(default_factory=set, repr=False)

    def next_delay(self, now: float | None = None) -> float:
        """Seconds until the next tick."""
        if not self.align:
            return self.interval
        now = time.time() if now is None else now
        return seconds_until_boundary(now - self.align_offset, self.interval)

    async def run_once(self) -> bool:
        """Run the job unless a run is already in flight.

        Returns:
            True if the job ran and succeeded
        """
        if self.running:
            self.skips += 1
            logger.debug(f"Task '{self.name}' still running, tick skipped")
            return False

        self.running = True
        try:
            await self.func()
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = f"{e.__class__.__name__}: {e}"
            logger.error(f"Task '{self.name}' failed: {self.last_error}")
            return False
        finally:
            self.runs += 1
            self.last_run_at = datetime.now(timezone.utc)
            self.running = False

    def status(self) -> dict:
        return {
            "interval": self.interval,
            "aligned": self.align,
            "running": self.running,
            "runs": self.runs,
            "failures": self.failures,
            "skips": self.skips,
            "last_error": self.last_error,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


class Scheduler:
    """Owns the periodic tasks and their loops."""

    def __init__(self):
        self._tasks: dict[str, PeriodicTask] = {}
        self._loops: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._loops)

    def add(
        self,
        name: str,
        func: TaskFunc,
        interval: float,
        align: bool = False,
        align_offset: float = 0.0,
        run_on_start: bool = False,
    ) -> PeriodicTask:
        """Register a periodic task. Names are unique."""
        if name in self._tasks:
            raise ValueError(f"Task '{name}' already registered")
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        task = PeriodicTask(
            name=name,
            func=func,
            interval=interval,
            align=align,
            align_offset=align_offset,
            run_on_start=run_on_start,
        )
        self._tasks[name] = task
        return task

    def get(self, name: str) -> PeriodicTask | None:
        return self._tasks.get(name)

    def _spawn(self, task: PeriodicTask) -> asyncio.Task:
        run = asyncio.create_task(task.run_once(), name=f"{task.name}-run")
        task._inflight.add(run)
        run.add_done_callback(task._inflight.discard)
        return run

    async def _loop(self, task: PeriodicTask) -> None:
        if task.run_on_start:
            self._spawn(task)
        while True:
            await asyncio.sleep(task.next_delay())
            self._spawn(task)

    def start(self) -> None:
        """Start one loop per registered task."""
        if self.is_running:
            return
        for task in self._tasks.values():
            self._loops.append(asyncio.create_task(self._loop(task), name=f"{task.name}-loop"))
        logger.info(f"Scheduler started with {len(self._tasks)} task(s): {', '.join(self._tasks)}")

    async def run_now(self, name: str) -> bool:
        """Run a task out of band, under the same overlap guard.

        Raises:
            KeyError: unknown task name
        """
        task = self._tasks[name]
        return await task.run_once()

    async def stop(self) -> None:
        """Cancel every loop and in-flight run and wait for them to finish."""
        pending = list(self._loops)
        for task in self._tasks.values():
            pending.extend(task._inflight)
        for t in pending:
            if not t.done():
                t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loops.clear()
        logger.info("Scheduler stopped")

    def status(self) -> dict[str, dict]:
        return {name: task.status() for name, task in self._tasks.items()}
