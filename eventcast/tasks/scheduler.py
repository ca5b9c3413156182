# eventcast/tasks/scheduler.py

"""
Task Scheduler.

Owns every timer loop in the process as a named asyncio task with an
explicit start/stop lifecycle:

    publication-poll            main scheduled-publication tick
    publication-fast-poll       extra tick while a publication is imminent
    reminder-check              due reminder delivery
    countdown-refresh           countdown re-edits and event conclusion
    attendance-refresh:<id>     attendance polling for the selected event

A loop body returning ``False`` ends its own loop; any exception is logged
and the loop keeps ticking.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

PUBLICATION_POLL = 'publication-poll'
PUBLICATION_FAST_POLL = 'publication-fast-poll'
REMINDER_CHECK = 'reminder-check'
COUNTDOWN_REFRESH = 'countdown-refresh'
ATTENDANCE_REFRESH_PREFIX = 'attendance-refresh:'


def attendance_loop_name(event_id):
    return f"{ATTENDANCE_REFRESH_PREFIX}{event_id}"


class TaskScheduler:

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stats: Dict[str, dict] = {}

    def is_running(self, name) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def running(self):
        return sorted(name for name in self._tasks if self.is_running(name))

    def start_loop(self, name, interval, tick: Callable[[], Awaitable], run_immediately=True) -> asyncio.Task:
        """Start ``tick`` every ``interval`` seconds unless a loop of that name already runs."""
        if self.is_running(name):
            return self._tasks[name]
        self._stats[name] = {'ticks': 0, 'errors': 0}
        task = asyncio.create_task(self._run(name, interval, tick, run_immediately), name=name)
        self._tasks[name] = task
        logger.info(f"▶️ Started loop {name} (every {interval}s)")
        return task

    def cancel_loop(self, name) -> bool:
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
            logger.info(f"⏹️ Stopped loop {name}")
        return True

    def cancel_matching(self, prefix):
        for name in [n for n in self._tasks if n.startswith(prefix)]:
            self.cancel_loop(name)

    async def stop(self):
        """Cancel every loop and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Task scheduler stopped")

    def get_stats(self):
        return {name: {**stats, 'running': self.is_running(name)} for name, stats in self._stats.items()}

    async def _run(self, name, interval, tick, run_immediately):
        try:
            if not run_immediately:
                await asyncio.sleep(interval)
            while True:
                self._stats[name]['ticks'] += 1
                try:
                    keep_going = await tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._stats[name]['errors'] += 1
                    logger.error(f"❌ Error in loop {name}: {e}", exc_info=True)
                    keep_going = True
                if keep_going is False:
                    logger.info(f"Loop {name} finished")
                    break
                await asyncio.sleep(interval)
        finally:
            if self._tasks.get(name) is asyncio.current_task():
                del self._tasks[name]


class EngineLoops:
    """Wires the queue, reminder and countdown engines into the task scheduler."""

    def __init__(self, scheduler: TaskScheduler, queue, reminders, countdown=None,
                 poll_interval=60, fast_poll_interval=15, reminder_interval=60, countdown_interval=60):
        self.scheduler = scheduler
        self.queue = queue
        self.reminders = reminders
        self.poll_interval = poll_interval
        self.fast_poll_interval = fast_poll_interval
        self.reminder_interval = reminder_interval
        self.countdown = countdown
        self.countdown_interval = countdown_interval

    def start(self):
        self.scheduler.start_loop(PUBLICATION_POLL, self.poll_interval, self.publication_tick)
        self.scheduler.start_loop(REMINDER_CHECK, self.reminder_interval, self.reminder_tick)
        if self.countdown is not None:
            self.scheduler.start_loop(COUNTDOWN_REFRESH, self.countdown_interval, self.countdown_tick)

    async def publication_tick(self):
        await self.queue.poll()
        self._maybe_start_fast_poll()

    async def fast_publication_tick(self):
        if not self.queue.has_imminent():
            return False
        await self.queue.poll()
        return self.queue.has_imminent()

    async def reminder_tick(self):
        await self.reminders.process_due()

    async def countdown_tick(self):
        await self.countdown.tick()

    def _maybe_start_fast_poll(self):
        if self.queue.has_imminent() and not self.scheduler.is_running(PUBLICATION_FAST_POLL):
            logger.info("⚡ Publication due soon; enabling fast poll")
            self.scheduler.start_loop(
                PUBLICATION_FAST_POLL, self.fast_poll_interval, self.fast_publication_tick, run_immediately=False
            )

    def notify_schedule_changed(self):
        """Called after an entry is scheduled so an imminent due time gets the fast poll."""
        self._maybe_start_fast_poll()
