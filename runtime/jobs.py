"""
Background Jobs

Minimal asyncio scheduler: a job sleeps until its next fire time, runs its
callback, and asks for the following fire time. Cancelling a job stops future
firings only; a firing already in progress runs to completion.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

NextFire = Callable[[datetime], Optional[datetime]]
JobCallback = Callable[[datetime], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScheduledJob:
    """A cancellable recurring (or one-shot) job on the running event loop"""

    def __init__(self, name: str, next_fire: NextFire, callback: JobCallback,
                 now_fn: Callable[[], datetime] = utc_now):
        self.name = name
        self.next_fire = next_fire
        self.callback = callback
        self.now_fn = now_fn
        self.next_run_at: Optional[datetime] = None
        self.fire_count = 0
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> "ScheduledJob":
        """Start the job loop (requires a running event loop)"""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    def cancel(self) -> None:
        """Stop future firings"""
        self._cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
        logger.info(f"Job '{self.name}' cancelled")

    async def wait_idle(self) -> None:
        """Wait for any in-flight firing to finish"""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(self):
        last_fire: Optional[datetime] = None
        try:
            while not self._cancelled:
                now = self.now_fn()
                after = max(now, last_fire) if last_fire else now
                fire_at = self.next_fire(after)
                if fire_at is None:
                    logger.info(f"Job '{self.name}' has no further fire times")
                    return

                self.next_run_at = fire_at
                logger.debug(f"Job '{self.name}' next fire at {fire_at.isoformat()}")

                delay = (fire_at - self.now_fn()).total_seconds()
                if delay > 0:
                    await asyncio.sleep(delay)

                last_fire = fire_at
                firing = asyncio.create_task(self._fire(fire_at))
                self._inflight.add(firing)
                firing.add_done_callback(self._inflight.discard)

                # Firings of one job never overlap; cancellation leaves this one running
                await asyncio.shield(firing)
        except asyncio.CancelledError:
            pass

    async def _fire(self, fire_at: datetime):
        self.fire_count += 1
        try:
            await self.callback(fire_at)
        except Exception as e:
            logger.error(f"Job '{self.name}' failed at {fire_at.isoformat()}: {e}")
