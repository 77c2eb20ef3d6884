import logging
import time

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import STATE_STOPPED
from apscheduler.schedulers.asyncio import AsyncIOScheduler


def now_ms() -> int:
    return int(time.time() * 1000)


def remaining_ms(end_timestamp, now) -> int:
    if end_timestamp is None:
        return 0
    return max(0, int(end_timestamp) - int(now))


def split_remaining(end_timestamp, now) -> tuple[int, int]:
    """(whole minutes, whole seconds) left until end_timestamp; (0, 0) once it has passed."""
    remaining = remaining_ms(end_timestamp, now)
    if remaining <= 0:
        return 0, 0
    return remaining // 60000, (remaining // 1000) % 60


class CountdownClock:
    """
    Re-evaluates a fixed end timestamp on an interval job while one is set.

    No job exists while end_timestamp is None, so an idle or failed session
    leaves nothing ticking. restart() replaces the job, so the interval is
    always measured from the most recent end timestamp.
    """

    JOB_ID = "session-countdown"

    def __init__(self, on_tick, scheduler=None, interval=1.0, clock=now_ms, logger=None):
        self.logger = logger or logging.getLogger(__name__)

        self.on_tick = on_tick  # async callable, fired once per interval
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or AsyncIOScheduler()
        self.interval = float(interval)
        self.clock = clock
        self.end_timestamp = None

    @property
    def running(self) -> bool:
        return self.scheduler.get_job(self.JOB_ID) is not None

    def remaining(self) -> tuple[int, int]:
        return split_remaining(self.end_timestamp, self.clock())

    def restart(self, end_timestamp: int):
        self.end_timestamp = int(end_timestamp)
        if self._owns_scheduler and self.scheduler.state == STATE_STOPPED:
            self.scheduler.start()  # needs the running loop
        self.scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval,
            id=self.JOB_ID,
            name="countdown",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.logger.debug("Countdown (re)started, ends at %s", self.end_timestamp)

    def stop(self):
        if self.end_timestamp is None and not self.running:
            return
        self.end_timestamp = None
        try:
            self.scheduler.remove_job(self.JOB_ID)
        except JobLookupError:
            pass
        self.logger.debug("Countdown stopped")

    async def tick(self):
        if self.end_timestamp is None:
            return
        await self.on_tick()
