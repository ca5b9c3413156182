# eventcast/engine.py

"""
Engine assembly.

Builds the full set of collaborating services around one session, one
channel adapter and one task scheduler.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from eventcast.channels.base import ChannelAdapter
from eventcast.channels.message_cache import MessageIdCache
from eventcast.config import Config
from eventcast.services.attendance_reconciler import AttendanceReconciler
from eventcast.services.countdown import CountdownService
from eventcast.services.event_service import EventService
from eventcast.services.image_store import HttpImageStore, ImageStore, LocalImageStore
from eventcast.services.publication_orchestrator import PublicationOrchestrator
from eventcast.services.publication_queue import ScheduledPublicationQueue
from eventcast.services.reminder_scheduler import ReminderScheduler
from eventcast.services.roster import StaticRosterProvider
from eventcast.tasks.scheduler import EngineLoops, TaskScheduler

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    session: object
    adapter: ChannelAdapter
    task_scheduler: TaskScheduler
    reconciler: AttendanceReconciler
    reminders: ReminderScheduler
    orchestrator: PublicationOrchestrator
    queue: ScheduledPublicationQueue
    countdown: CountdownService
    events: EventService
    loops: EngineLoops
    image_store: Optional[ImageStore] = None

    def start(self):
        self.loops.start()

    async def stop(self):
        await self.task_scheduler.stop()
        if isinstance(self.image_store, HttpImageStore):
            await self.image_store.close()


def build_engine(session, adapter: ChannelAdapter, config=Config, roster=None, image_store=None,
                 message_cache: Optional[MessageIdCache] = None, clock=None) -> Engine:
    task_scheduler = TaskScheduler()
    roster = roster or StaticRosterProvider.from_file(config.PARTICIPANT_DIRECTORY_PATH)

    if image_store is None:
        if config.IMAGE_UPLOAD_URL:
            image_store = HttpImageStore(
                config.IMAGE_UPLOAD_URL, max_additional_images=config.MAX_ADDITIONAL_IMAGES
            )
        else:
            image_store = LocalImageStore(
                config.IMAGE_STORE_DIR, max_additional_images=config.MAX_ADDITIONAL_IMAGES
            )
    if message_cache is None and config.MESSAGE_ID_CACHE_PATH:
        message_cache = MessageIdCache(config.MESSAGE_ID_CACHE_PATH)

    reconciler = AttendanceReconciler(
        session, adapter, task_scheduler,
        refresh_interval=config.ATTENDANCE_REFRESH_INTERVAL,
        channel_timeout=config.CHANNEL_CALL_TIMEOUT,
        clock=clock,
    )
    reminders = ReminderScheduler(
        session, adapter, reconciler=reconciler, roster=roster,
        channel_timeout=config.CHANNEL_CALL_TIMEOUT,
        default_timezone=config.DEFAULT_TIMEZONE,
        clock=clock,
    )
    orchestrator = PublicationOrchestrator(
        session, adapter,
        reminder_scheduler=reminders,
        image_store=image_store,
        message_cache=message_cache,
        roster=roster,
        channel_timeout=config.CHANNEL_CALL_TIMEOUT,
        image_timeout=config.IMAGE_UPLOAD_TIMEOUT,
        clock=clock,
    )
    queue = ScheduledPublicationQueue(
        session, orchestrator, imminent_window=config.PUBLICATION_IMMINENT_WINDOW, clock=clock
    )
    countdown = CountdownService(session, orchestrator, reconciler=reconciler, clock=clock)
    loops = EngineLoops(
        task_scheduler, queue, reminders, countdown,
        poll_interval=config.PUBLICATION_POLL_INTERVAL,
        fast_poll_interval=config.PUBLICATION_FAST_POLL_INTERVAL,
        reminder_interval=config.REMINDER_CHECK_INTERVAL,
        countdown_interval=config.COUNTDOWN_CHECK_INTERVAL,
    )
    events = EventService(
        session, orchestrator, queue, reminders,
        reconciler=reconciler,
        record_timeout=config.RECORD_CREATE_TIMEOUT,
        on_schedule_changed=loops.notify_schedule_changed,
        clock=clock,
    )
    logger.info("Event publication engine assembled")
    return Engine(
        session=session,
        adapter=adapter,
        task_scheduler=task_scheduler,
        reconciler=reconciler,
        reminders=reminders,
        orchestrator=orchestrator,
        queue=queue,
        countdown=countdown,
        events=events,
        loops=loops,
        image_store=image_store,
    )
