# eventcast/schemas.py

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

ReminderUnit = Literal['minutes', 'hours', 'days']
AttendanceStatus = Literal['accepted', 'declined', 'tentative']


# ---------------------------------------------------------------------------
# Reminder settings
# ---------------------------------------------------------------------------

class ReminderRecipients(BaseModel):
    accepted: bool = True
    tentative: bool = True
    declined: bool = False
    no_response: bool = False

    def any_selected(self):
        return self.accepted or self.tentative or self.declined or self.no_response


class ReminderSpec(BaseModel):
    enabled: bool = True
    value: int = Field(15, gt=0)
    unit: ReminderUnit = 'minutes'
    recipients: ReminderRecipients = Field(default_factory=ReminderRecipients)


class ReminderConfig(BaseModel):
    """Two independent reminder slots."""
    first: Optional[ReminderSpec] = None
    second: Optional[ReminderSpec] = None

    def slots(self):
        """Enabled slots as (name, spec) pairs."""
        return [
            (name, spec) for name, spec in (('first', self.first), ('second', self.second))
            if spec is not None and spec.enabled
        ]

    @classmethod
    def default_single(cls):
        """Single 15-minutes-before reminder used when an event has reminder history but no settings."""
        return cls(first=ReminderSpec(enabled=True, value=15, unit='minutes'))

    @classmethod
    def ui_defaults(cls):
        """Initial form values: 15 minutes before and 3 days before, both disabled."""
        return cls(
            first=ReminderSpec(enabled=False, value=15, unit='minutes'),
            second=ReminderSpec(enabled=False, value=3, unit='days'),
        )


# ---------------------------------------------------------------------------
# Channels and attendance
# ---------------------------------------------------------------------------

class ChannelTargetRequest(BaseModel):
    channel_id: str
    guild_id: Optional[str] = None


class AttendanceRecord(BaseModel):
    person_id: str
    display_name: str
    status: AttendanceStatus


class AttendanceSnapshot(BaseModel):
    event_id: str
    accepted: List[AttendanceRecord] = Field(default_factory=list)
    declined: List[AttendanceRecord] = Field(default_factory=list)
    tentative: List[AttendanceRecord] = Field(default_factory=list)
    fetched_at: datetime
    stale: bool = False
    notice: Optional[str] = None

    @classmethod
    def from_records(cls, event_id, records, fetched_at):
        buckets = {'accepted': [], 'declined': [], 'tentative': []}
        for record in records:
            buckets[record.status].append(record)
        return cls(event_id=event_id, fetched_at=fetched_at, **buckets)

    def records(self):
        return [*self.accepted, *self.tentative, *self.declined]

    def person_ids(self):
        return {record.person_id for record in self.records()}

    def counts(self):
        return {
            'accepted': len(self.accepted),
            'declined': len(self.declined),
            'tentative': len(self.tentative),
        }


class RSVPUpdateNotification(BaseModel):
    """Push notification carrying the full attendance state of one channel message."""
    message_id: str
    attendance: List[AttendanceRecord] = Field(default_factory=list)
    timestamp: datetime

    def identity(self):
        """Serialized identity used to drop back-to-back duplicates."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------

class EventCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    cycle_id: Optional[str] = None
    participants: Optional[List[str]] = None
    timezone: Optional[str] = None
    reminder_settings: Optional[ReminderConfig] = None
    channels: List[ChannelTargetRequest] = Field(default_factory=list)
    publish_now: bool = False
    scheduled_publication: Optional[datetime] = None

    @model_validator(mode='after')
    def check_publication_mode(self):
        if self.publish_now and self.scheduled_publication is not None:
            raise ValueError('publish_now and scheduled_publication are mutually exclusive')
        return self


class EventUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cycle_id: Optional[str] = None
    participants: Optional[List[str]] = None
    timezone: Optional[str] = None
    reminder_settings: Optional[ReminderConfig] = None
    channels: Optional[List[ChannelTargetRequest]] = None
    publish_now: bool = False


class ScheduleRequest(BaseModel):
    due_time: datetime


class PublishRequest(BaseModel):
    channels: List[ChannelTargetRequest]
    reminder_settings: Optional[ReminderConfig] = None


class CycleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    cycle_type: str = 'season'
    default_participants: Optional[List[str]] = None


class CycleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    cycle_type: Optional[str] = None
    default_participants: Optional[List[str]] = None


class ChannelErrorResponse(BaseModel):
    channel_id: str
    operation: str
    message: str


class ServiceResultResponse(BaseModel):
    success: bool
    message: str
    data: Optional[dict] = None
    errors: List[ChannelErrorResponse] = Field(default_factory=list)
