# eventcast/services/event_service.py

"""
Event Service.

The entry point UI actions call to create, edit and delete events and
cycles. Record changes always complete; channel work layered on top only
qualifies the returned message ("Event created but failed to publish").
Validation happens before any side effect.
"""

import asyncio

from pydantic import BaseModel
from sqlalchemy.orm import Session

from eventcast.models import DEFAULT_EVENT_DURATION
from eventcast.repositories import EventRepository, CycleRepository
from eventcast.services.base_service import (
    BaseService,
    ConflictError,
    NotFoundError,
    ServiceError,
    ServiceResult,
    ValidationError,
)
from eventcast.services.reminder_scheduler import coerce_reminder_config
from eventcast.utils.datetime_utils import to_naive_utc
from eventcast.utils.timeouts import OperationTimeoutError, call_with_timeout

EVENT_FIELDS = ('title', 'description', 'start_time', 'end_time', 'cycle_id', 'participants', 'timezone')
CYCLE_FIELDS = ('name', 'description', 'start_date', 'end_date', 'cycle_type', 'default_participants')


def _as_dict(data, exclude_unset=False):
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=exclude_unset)
    return dict(data or {})


def _failed_channels(errors):
    return len({e.channel_id for e in errors})


def _plural(count, word):
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class EventService(BaseService):

    def __init__(self, session: Session, orchestrator, queue, reminder_scheduler, reconciler=None,
                 record_timeout=15.0, on_schedule_changed=None, clock=None):
        super().__init__(session, clock)
        self.orchestrator = orchestrator
        self.queue = queue
        self.reminder_scheduler = reminder_scheduler
        self.reconciler = reconciler
        self.record_timeout = record_timeout
        self.on_schedule_changed = on_schedule_changed
        self.events = EventRepository(session)
        self.cycles = CycleRepository(session)

    # ==================== Validation ====================

    def _require_event(self, event_id):
        event = self.events.get_fresh(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found", 'EVENT_NOT_FOUND')
        return event

    def _require_cycle(self, cycle_id):
        cycle = self.cycles.get_by_id(cycle_id)
        if cycle is None:
            raise ValidationError(f"Cycle {cycle_id} does not exist", 'CYCLE_NOT_FOUND')
        return cycle

    @staticmethod
    def _check_window(start, end, what='Event'):
        if end <= start:
            raise ValidationError(f"{what} end time must be after its start time", 'INVALID_TIME_RANGE')

    def _prepare_event_fields(self, data):
        title = (data.get('title') or '').strip()
        if not title:
            raise ValidationError("Event title is required", 'TITLE_REQUIRED')
        if data.get('start_time') is None:
            raise ValidationError("Event start time is required", 'START_REQUIRED')

        start = to_naive_utc(data['start_time'])
        end = to_naive_utc(data.get('end_time')) or start + DEFAULT_EVENT_DURATION
        self._check_window(start, end)

        participants = data.get('participants')
        cycle_id = data.get('cycle_id')
        if cycle_id:
            cycle = self._require_cycle(cycle_id)
            if participants is None:
                participants = list(cycle.default_participants or [])

        fields = {
            'title': title,
            'description': data.get('description'),
            'start_time': start,
            'end_time': end,
            'cycle_id': cycle_id,
            'participants': list(participants or []),
            'timezone': data.get('timezone'),
        }
        reminder_config = coerce_reminder_config(data.get('reminder_settings'))
        if reminder_config is not None:
            fields['reminder_settings'] = reminder_config.model_dump()
        return fields, reminder_config

    # ==================== Events ====================

    def get_event(self, event_id):
        return self._require_event(event_id)

    def list_events(self, cycle_id=None):
        return self.events.fetch_events(cycle_id)

    async def create_event(self, data, images=None) -> ServiceResult:
        """
        Create an event record, then optionally publish it now or queue it.

        ``data`` may carry ``channels``, ``publish_now`` and
        ``scheduled_publication`` alongside the record fields.
        """
        data = _as_dict(data)
        fields, reminder_config = self._prepare_event_fields(data)
        publish_now = bool(data.get('publish_now'))
        scheduled_for = to_naive_utc(data.get('scheduled_publication'))
        if publish_now and scheduled_for is not None:
            raise ValidationError("Choose either immediate or scheduled publication", 'PUBLICATION_MODE')

        self._log_operation_start('create_event', event_title=fields['title'])
        pending = asyncio.ensure_future(asyncio.to_thread(self._create_record, fields))
        try:
            event_id = await call_with_timeout(
                asyncio.shield(pending),
                self.record_timeout,
                operation='event record create',
            )
        except OperationTimeoutError as e:
            self._log_operation_error('create_event', e)
            pending.add_done_callback(self._discard_late_record)
            return ServiceResult.fail("Event creation timed out", 'RECORD_TIMEOUT')

        if publish_now:
            channels = data.get('channels') or None
            publication = await self.orchestrator.publish(
                event_id, channels, reminder_config=reminder_config, images=images
            )
            if not publication.success:
                message = "Event created but failed to publish"
                if publication.validation_error:
                    message = f"{message}: {publication.validation_error}"
            elif publication.errors:
                message = (
                    f"Event created and published; "
                    f"{_plural(_failed_channels(publication.errors), 'channel')} failed"
                )
            else:
                message = "Event created and published"
            return ServiceResult.ok(self._event_data(event_id), message, errors=publication.errors)

        if scheduled_for is not None:
            self.queue.schedule(event_id, scheduled_for)
            self._schedule_changed()
            return ServiceResult.ok(
                self._event_data(event_id),
                f"Event created; publication scheduled for {scheduled_for.isoformat()}"
            )

        self._log_operation_success('create_event', event_id=event_id)
        return ServiceResult.ok(self._event_data(event_id), "Event created")

    def _create_record(self, fields):
        """Runs on a worker thread, so it gets its own session."""
        with Session(bind=self.session.get_bind()) as session:
            event = EventRepository(session).create(**fields)
            return event.id

    def _discard_late_record(self, pending):
        if pending.cancelled():
            return
        if pending.exception() is not None:
            self.logger.warning(f"Timed-out event create failed later: {pending.exception()}")
            return
        event_id = pending.result()
        self.logger.warning(f"Deleting event {event_id}: its record was written after the create timed out")
        self.events.delete_event(event_id)

    async def update_event(self, event_id, data) -> ServiceResult:
        """
        Apply an edit, push it to the event's channels and recompute reminders.

        When the start time moves without an explicit end time, the end
        moves with it so the duration is kept.
        """
        data = _as_dict(data, exclude_unset=True)
        event = self._require_event(event_id)

        fields = {k: data[k] for k in EVENT_FIELDS if k in data}
        if 'title' in fields:
            fields['title'] = (fields['title'] or '').strip()
            if not fields['title']:
                raise ValidationError("Event title is required", 'TITLE_REQUIRED')

        new_start = to_naive_utc(fields.get('start_time')) or event.start_time
        if 'start_time' in fields:
            fields['start_time'] = new_start
        if fields.get('end_time') is not None:
            new_end = to_naive_utc(fields['end_time'])
        elif 'start_time' in fields:
            new_end = event.end_time + (new_start - event.start_time)
        else:
            new_end = event.end_time
        self._check_window(new_start, new_end)
        if new_end != event.end_time:
            fields['end_time'] = new_end
        reopened = event.concluded_at is not None and new_end > self.now()
        if reopened:
            fields['concluded_at'] = None

        if fields.get('cycle_id'):
            cycle = self._require_cycle(fields['cycle_id'])
            if fields.get('participants') is None and not event.participants:
                fields['participants'] = list(cycle.default_participants or [])
        if 'participants' in fields and fields['participants'] is None:
            fields.pop('participants')

        reminder_config = coerce_reminder_config(data.get('reminder_settings'))
        if reminder_config is not None:
            fields['reminder_settings'] = reminder_config.model_dump()

        self._log_operation_start('update_event', event_id=event_id)
        outcome = await self.orchestrator.update(
            event_id,
            fields,
            publish_now=bool(data.get('publish_now')),
            channels=data.get('channels') or None,
        )

        if reopened and self.reconciler is not None:
            self.reconciler.reopen(event_id)

        event = self.events.get_fresh(event_id)
        if event.is_published:
            self.reminder_scheduler.reschedule(event_id, event.start_time, reminder_config)

        if outcome.publication is not None:
            publication = outcome.publication
            if not publication.success:
                message = "Event updated but failed to publish"
            elif publication.errors:
                message = (
                    f"Event updated and published; "
                    f"{_plural(_failed_channels(publication.errors), 'channel')} failed"
                )
            else:
                message = "Event updated and published"
        elif outcome.errors:
            message = f"Event updated; {_plural(_failed_channels(outcome.errors), 'channel')} failed to update"
        else:
            message = "Event updated"

        self._log_operation_success('update_event', event_id=event_id, error_count=len(outcome.errors))
        return ServiceResult.ok(self._event_data(event_id), message, errors=outcome.errors)

    async def delete_event(self, event_id) -> ServiceResult:
        """
        Delete an event: cancel its queue entry and reminders, remove its
        channel messages, then delete the record regardless of channel
        outcomes.
        """
        self._require_event(event_id)
        self._log_operation_start('delete_event', event_id=event_id)

        self.queue.cancel(event_id)
        self.reminder_scheduler.cancel(event_id)
        if self.reconciler is not None:
            self.reconciler.forget(event_id)

        errors = []
        try:
            outcome = await self.orchestrator.delete(event_id)
            errors = outcome.errors
        except ServiceError:
            raise
        except Exception as e:
            self._log_operation_error('delete_event', e, event_id=event_id)
            message = "Event deleted; channel messages could not be removed"
            self.events.delete_event(event_id)
            return ServiceResult.ok({'id': event_id}, message)

        self.events.delete_event(event_id)
        if errors:
            message = f"Event deleted; failed to remove {_plural(len(errors), 'channel message')}"
        else:
            message = "Event deleted"
        self._log_operation_success('delete_event', event_id=event_id, error_count=len(errors))
        return ServiceResult.ok({'id': event_id}, message, errors=errors)

    async def publish_event(self, event_id, channels=None, reminder_settings=None, images=None) -> ServiceResult:
        event = self._require_event(event_id)
        if event.concluded_at is not None:
            raise ConflictError(f"Event {event_id} has already finished", 'EVENT_CONCLUDED')
        publication = await self.orchestrator.publish(
            event_id, channels, reminder_config=coerce_reminder_config(reminder_settings), images=images
        )
        data = self._event_data(event_id)
        if not publication.success:
            reason = publication.validation_error or "no channel accepted the announcement"
            return ServiceResult.fail(f"Failed to publish event: {reason}", 'PUBLISH_FAILED', errors=publication.errors)
        if publication.errors:
            message = f"Event published; {_plural(_failed_channels(publication.errors), 'channel')} failed"
        else:
            message = "Event published"
        return ServiceResult.ok(data, message, errors=publication.errors)

    def schedule_publication(self, event_id, due_time) -> ServiceResult:
        entry = self.queue.schedule(event_id, due_time)
        self._schedule_changed()
        return ServiceResult.ok(
            self._event_data(event_id),
            f"Publication scheduled for {entry.scheduled_time.isoformat()}"
        )

    def cancel_scheduled_publication(self, event_id) -> ServiceResult:
        self._require_event(event_id)
        if self.queue.cancel(event_id):
            return ServiceResult.ok(self._event_data(event_id), "Scheduled publication cancelled")
        return ServiceResult.ok(self._event_data(event_id), "No scheduled publication to cancel")

    def _schedule_changed(self):
        if self.on_schedule_changed is not None:
            self.on_schedule_changed()

    def _event_data(self, event_id):
        event = self.events.get_fresh(event_id)
        return event.to_dict() if event is not None else None

    # ==================== Cycles ====================

    def list_cycles(self):
        now = self.now()
        return [cycle.to_dict(now) for cycle in self.cycles.list_cycles()]

    def get_cycle(self, cycle_id):
        cycle = self.cycles.get_by_id(cycle_id)
        if cycle is None:
            raise NotFoundError(f"Cycle {cycle_id} not found", 'CYCLE_NOT_FOUND')
        return cycle

    def create_cycle(self, data) -> ServiceResult:
        data = _as_dict(data)
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("Cycle name is required", 'NAME_REQUIRED')
        start = to_naive_utc(data.get('start_date'))
        end = to_naive_utc(data.get('end_date'))
        if start is None or end is None:
            raise ValidationError("Cycle start and end dates are required", 'DATES_REQUIRED')
        self._check_window(start, end, 'Cycle')

        cycle = self.cycles.create(
            name=name,
            description=data.get('description'),
            start_date=start,
            end_date=end,
            cycle_type=data.get('cycle_type') or 'season',
            default_participants=data.get('default_participants'),
        )
        self.logger.info(f"Created cycle {cycle.id} ({cycle.name!r})")
        return ServiceResult.ok(cycle.to_dict(self.now()), "Cycle created")

    def update_cycle(self, cycle_id, data) -> ServiceResult:
        data = _as_dict(data, exclude_unset=True)
        cycle = self.get_cycle(cycle_id)
        fields = {k: data[k] for k in CYCLE_FIELDS if k in data}
        if 'name' in fields and not (fields['name'] or '').strip():
            raise ValidationError("Cycle name is required", 'NAME_REQUIRED')
        for key in ('start_date', 'end_date'):
            if key in fields:
                if fields[key] is None:
                    raise ValidationError(f"Cycle {key.replace('_', ' ')} is required", 'DATES_REQUIRED')
                fields[key] = to_naive_utc(fields[key])
        self._check_window(
            fields.get('start_date', cycle.start_date), fields.get('end_date', cycle.end_date), 'Cycle'
        )
        cycle = self.cycles.update(cycle_id, fields)
        return ServiceResult.ok(cycle.to_dict(self.now()), "Cycle updated")

    def delete_cycle(self, cycle_id) -> ServiceResult:
        self.get_cycle(cycle_id)
        count = self.cycles.event_count(cycle_id)
        if count:
            raise ValidationError(
                f"Cannot delete a cycle that still has {_plural(count, 'event')}", 'CYCLE_HAS_EVENTS'
            )
        self.cycles.delete_cycle(cycle_id)
        return ServiceResult.ok({'id': cycle_id}, "Cycle deleted")
