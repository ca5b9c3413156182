# eventcast/services/publication_orchestrator.py

"""
Publication Orchestrator.

Fans an event out to its channels, aggregates the per-channel outcomes and
keeps the event's channel -> message-id map durable. Channel calls run
concurrently and each one is time-boxed; one channel failing never stops
the others, and whatever succeeded is written back immediately.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from eventcast.channels.base import (
    ChannelAdapter,
    ChannelError,
    ChannelTarget,
    ChannelTimeoutError,
    EventMessage,
    MessageNotFoundError,
)
from eventcast.channels.message_cache import MessageIdCache
from eventcast.models import LEGACY_CHANNEL_KEY, normalize_channel_publications
from eventcast.repositories import EventRepository, ScheduledPublicationRepository
from eventcast.services.base_service import BaseService, NotFoundError
from eventcast.services.image_store import ImageStore, ImageUploadRequest
from eventcast.services.reminder_scheduler import coerce_reminder_config
from eventcast.services.roster import RosterProvider
from eventcast.utils.timeouts import call_with_timeout

IMAGE_STORE_CHANNEL = 'image-store'


@dataclass
class PublicationResult:
    success: bool
    event_id: str
    channel_publications: Dict[str, dict] = field(default_factory=dict)
    errors: List[ChannelError] = field(default_factory=list)
    published: List[str] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)
    reminders_scheduled: int = 0
    validation_error: Optional[str] = None


@dataclass
class UpdateResult:
    success: bool
    event_id: str
    updated: List[str] = field(default_factory=list)
    errors: List[ChannelError] = field(default_factory=list)
    publication: Optional[PublicationResult] = None


@dataclass
class DeleteResult:
    event_id: str
    deleted: List[str] = field(default_factory=list)
    errors: List[ChannelError] = field(default_factory=list)

    @property
    def success(self):
        return not self.errors


def coerce_targets(channels) -> List[ChannelTarget]:
    """Accept ChannelTarget objects, dicts/pydantic models with channel_id, or bare ids."""
    targets = []
    for channel in channels or ():
        if isinstance(channel, ChannelTarget):
            targets.append(channel)
        elif isinstance(channel, dict):
            targets.append(ChannelTarget(str(channel['channel_id']), _opt_str(channel.get('guild_id'))))
        elif hasattr(channel, 'channel_id'):
            targets.append(ChannelTarget(str(channel.channel_id), _opt_str(getattr(channel, 'guild_id', None))))
        else:
            targets.append(ChannelTarget(str(channel)))
    return targets


def dedupe_targets(targets: Iterable[ChannelTarget]) -> List[ChannelTarget]:
    unique = {}
    for target in targets:
        unique.setdefault(target.key, target)
    return list(unique.values())


def _opt_str(value):
    return str(value) if value is not None else None


class PublicationOrchestrator(BaseService):

    def __init__(self, session: Session, adapter: ChannelAdapter, reminder_scheduler=None,
                 image_store: Optional[ImageStore] = None, message_cache: Optional[MessageIdCache] = None,
                 roster: Optional[RosterProvider] = None, channel_timeout=30.0, image_timeout=20.0,
                 clock=None):
        super().__init__(session, clock)
        self.adapter = adapter
        self.reminder_scheduler = reminder_scheduler
        self.image_store = image_store
        self.message_cache = message_cache
        self.roster = roster or RosterProvider()
        self.channel_timeout = channel_timeout
        self.image_timeout = image_timeout
        self.events = EventRepository(session)
        self.queue = ScheduledPublicationRepository(session)

    # ==================== Helpers ====================

    def _load(self, event_or_id):
        event_id = getattr(event_or_id, 'id', event_or_id)
        event = self.events.get_fresh(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", 'EVENT_NOT_FOUND')
        return event

    def existing_publications(self, event):
        """
        Stored channel map, falling back to the local message-id cache only
        when the stored map is empty. Returns (map, from_cache).
        """
        publications = event.publications()
        if publications or self.message_cache is None:
            return publications, False
        cached = self.message_cache.lookup(event.id)
        if not cached:
            return {}, False
        self.logger.warning(f"⚠️ Event {event.id} has no stored publications; using cached message ids")
        return normalize_channel_publications(cached), True

    async def _channel_call(self, awaitable, channel_id, operation):
        return await call_with_timeout(
            awaitable,
            self.channel_timeout,
            operation=f"{operation} on channel {channel_id}",
            error_cls=ChannelTimeoutError,
        )

    # ==================== Publish ====================

    async def publish(self, event, channels=None, reminder_config=None,
                      images: Optional[ImageUploadRequest] = None) -> PublicationResult:
        """
        Publish an event to every target channel.

        When ``channels`` is omitted the targets come from the event's
        participant groups. Succeeds when at least one channel holds the
        announcement afterwards.
        """
        event = self._load(event)
        event_id = event.id

        if channels is None:
            targets = self.roster.channels_for_groups(event.participants or [])
        else:
            targets = coerce_targets(channels)
        targets = dedupe_targets(targets)

        if not targets:
            self.logger.warning(f"No channels configured for event {event_id}; nothing published")
            return PublicationResult(
                success=False,
                event_id=event_id,
                channel_publications=event.publications(),
                validation_error='No channels configured for this event',
            )

        self._log_operation_start('publish', event_id=event_id, channel_count=len(targets))
        errors: List[ChannelError] = []

        if images is not None and not images.is_empty():
            event = await self._upload_images(event, images, errors)

        existing, _ = self.existing_publications(event)
        to_post = [t for t in targets if t.channel_id not in existing]
        reused = [t.channel_id for t in targets if t.channel_id in existing]
        for channel_id in reused:
            self.logger.info(
                f"♻️ Event {event_id} already posted in channel {channel_id}, "
                f"reusing message {existing[channel_id]['message_id']}"
            )

        payload = EventMessage.from_event(event, now=self.now())
        outcomes = await asyncio.gather(
            *(self._channel_call(self.adapter.create_message(t, payload), t.channel_id, 'create')
              for t in to_post),
            return_exceptions=True
        )

        added = {}
        published_at = self.now().isoformat()
        for target, outcome in zip(to_post, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                errors.append(ChannelError(target.channel_id, 'create', str(outcome)))
                self.logger.error(f"❌ Failed to publish event {event_id} to channel {target.channel_id}: {outcome}")
                continue
            added[target.channel_id] = {
                'message_id': str(outcome),
                'published_at': published_at,
                'guild_id': target.guild_id,
            }

        if added or reused:
            # Entries recovered from the local cache become authoritative too
            merge = {**{c: existing[c] for c in reused}, **added}
            publications = self.events.write_channel_publications(event_id, added=merge)
        else:
            publications = self.events.get_fresh(event_id).publications()

        if self.message_cache is not None:
            for channel_id, info in added.items():
                self.message_cache.remember(event_id, channel_id, info['message_id'])

        success = bool(added or reused)
        result = PublicationResult(
            success=success,
            event_id=event_id,
            channel_publications=publications,
            errors=errors,
            published=list(added),
            reused=reused,
        )

        if success:
            if self.queue.mark_superseded(event_id, self.now()):
                self.logger.info(f"Pending scheduled publication for event {event_id} superseded by publish")
            result.reminders_scheduled = self._schedule_reminders(event_id, reminder_config)
            self._log_operation_success(
                'publish', event_id=event_id,
                published_count=len(added), reused_count=len(reused), error_count=len(errors)
            )
        else:
            self.logger.error(f"❌ Event {event_id} was not published to any channel ({len(errors)} error(s))")

        return result

    async def _upload_images(self, event, images, errors):
        if self.image_store is None:
            errors.append(ChannelError(IMAGE_STORE_CHANNEL, 'upload', 'No image store configured'))
            return event
        try:
            uploaded = await call_with_timeout(
                self.image_store.upload(
                    event.id,
                    header=images.header,
                    extra=images.extra,
                    mode=images.mode,
                    existing_urls=list(event.image_urls or []),
                    existing_header=event.header_image_url,
                ),
                self.image_timeout,
                operation=f"image upload for event {event.id}",
            )
        except Exception as e:
            self.logger.warning(f"⚠️ Image upload failed for event {event.id}, publishing without images: {e}")
            errors.append(ChannelError(IMAGE_STORE_CHANNEL, 'upload', str(e)))
            return event

        return self.events.update(event.id, {
            'header_image_url': uploaded.header_url,
            'image_urls': uploaded.image_urls,
        })

    def _schedule_reminders(self, event_id, reminder_config):
        if self.reminder_scheduler is None:
            return 0
        event = self.events.get_fresh(event_id)
        config = coerce_reminder_config(reminder_config)
        if config is not None:
            self.events.update(event_id, {'reminder_settings': config.model_dump()})
        elif event.reminder_settings:
            config = coerce_reminder_config(event.reminder_settings)
        if config is None:
            return 0
        rows = self.reminder_scheduler.schedule(event_id, event.start_time, config)
        return len(rows)

    # ==================== Update ====================

    async def update(self, event_id, changed_fields=None, publish_now=False, channels=None) -> UpdateResult:
        """
        Apply record changes and push the new content to every channel the
        event is already posted in.

        An unpublished event is published instead when ``publish_now`` is set.
        Channel failures are reported but never roll back the record.
        """
        event = self._load(event_id)
        if changed_fields:
            event = self.events.update(event.id, dict(changed_fields))

        existing, from_cache = self.existing_publications(event)
        if not existing:
            if publish_now:
                publication = await self.publish(event, channels)
                return UpdateResult(
                    success=True,
                    event_id=event.id,
                    errors=list(publication.errors),
                    publication=publication,
                )
            return UpdateResult(success=True, event_id=event.id)

        self._log_operation_start('update', event_id=event.id, channel_count=len(existing))
        payload = EventMessage.from_event(event, now=self.now())
        channel_ids = [c for c in existing if c != LEGACY_CHANNEL_KEY]
        outcomes = await asyncio.gather(
            *(self._channel_call(
                self.adapter.update_message(c, existing[c]['message_id'], payload), c, 'update')
              for c in channel_ids),
            return_exceptions=True
        )

        result = UpdateResult(success=True, event_id=event.id)
        for channel_id, outcome in zip(channel_ids, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                result.errors.append(ChannelError(channel_id, 'update', str(outcome)))
                self.logger.error(f"❌ Failed to update event {event.id} in channel {channel_id}: {outcome}")
            else:
                result.updated.append(channel_id)

        if from_cache:
            self.events.write_channel_publications(event.id, added=existing)

        self._log_operation_success(
            'update', event_id=event.id, updated_count=len(result.updated), error_count=len(result.errors)
        )
        return result

    # ==================== Delete ====================

    async def delete(self, event_id) -> DeleteResult:
        """
        Remove the event's message from every channel.

        A message the channel reports as already gone counts as deleted.
        Successfully removed channels are dropped from the stored map.
        """
        event = self._load(event_id)
        existing, _ = self.existing_publications(event)
        result = DeleteResult(event_id=event.id)
        if not existing:
            return result

        self._log_operation_start('delete', event_id=event.id, channel_count=len(existing))
        channel_ids = [c for c in existing if c != LEGACY_CHANNEL_KEY]
        outcomes = await asyncio.gather(
            *(self._channel_call(
                self.adapter.delete_message(c, existing[c]['message_id']), c, 'delete')
              for c in channel_ids),
            return_exceptions=True
        )

        for channel_id, outcome in zip(channel_ids, outcomes):
            if isinstance(outcome, MessageNotFoundError):
                self.logger.info(f"Message for event {event.id} in channel {channel_id} already deleted")
                result.deleted.append(channel_id)
            elif isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                result.errors.append(ChannelError(channel_id, 'delete', str(outcome)))
                self.logger.error(f"❌ Failed to delete event {event.id} from channel {channel_id}: {outcome}")
            else:
                result.deleted.append(channel_id)

        if LEGACY_CHANNEL_KEY in existing:
            result.errors.append(ChannelError(
                LEGACY_CHANNEL_KEY, 'delete', 'Legacy publication has no channel; run the migration first'
            ))

        if result.deleted:
            self.events.write_channel_publications(event.id, removed=result.deleted)
        if self.message_cache is not None and not result.errors:
            self.message_cache.forget(event.id)

        self._log_operation_success(
            'delete', event_id=event.id, deleted_count=len(result.deleted), error_count=len(result.errors)
        )
        return result
