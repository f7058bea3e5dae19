import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable
import httpx
from app.client.timesync import Clock, measure_offset, utcnow
from app.errors import TimeSyncError
from app.milestones import TimeLeft, remaining, time_left

logger = logging.getLogger(__name__)

class Countdown:
    """Client-side countdown to ``target``, refreshed every ``interval`` seconds.

    The clock offset is measured once against ``time_url`` when started. ``stop()``
    cancels the timer and any sync still in flight.
    """

    def __init__(
        self,
        target: datetime,
        time_url: str | None = None,
        interval: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utcnow,
    ):
        self.target = target
        self.time_url = time_url
        self.interval = interval
        self.offset = timedelta(0)
        self._http_client = http_client
        self._clock = clock
        self._listeners: list[Callable[["Countdown"], None]] = []
        self._task: asyncio.Task | None = None
        self.remaining = remaining(target, clock(), self.offset)

    @property
    def is_expired(self) -> bool:
        return self.remaining <= timedelta(0)

    @property
    def time_left(self) -> TimeLeft:
        return time_left(self.remaining)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_tick(self, listener: Callable[["Countdown"], None]) -> None:
        self._listeners.append(listener)

    def refresh(self) -> timedelta:
        self.remaining = remaining(self.target, self._clock(), self.offset)
        for listener in self._listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Countdown listener failed")
        return self.remaining

    async def sync(self) -> timedelta:
        """Measure the offset once. A failed sync keeps the previous offset."""
        if not self.time_url:
            return self.offset
        try:
            if self._http_client is not None:
                self.offset = await measure_offset(self._http_client, self.time_url, self._clock)
            else:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    self.offset = await measure_offset(client, self.time_url, self._clock)
        except TimeSyncError as e:
            logger.warning("Failed to sync server time: %s", e)
        return self.offset

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        await self.sync()
        self.refresh()
        while not self.is_expired:
            await asyncio.sleep(self.interval)
            self.refresh()

    async def __aenter__(self) -> "Countdown":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()
