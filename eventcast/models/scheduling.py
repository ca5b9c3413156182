# eventcast/models/scheduling.py

"""
Durable scheduling rows: pending publications and reminder fire times.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from eventcast.models.core import Base
from eventcast.utils.datetime_utils import utcnow


class ScheduledPublicationEntry(Base):
    __tablename__ = 'scheduled_event_publications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False, unique=True)
    scheduled_time = Column(DateTime, nullable=False, index=True)
    sent = Column(Boolean, nullable=False, default=False, index=True)
    sent_at = Column(DateTime)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    event = relationship('Event', back_populates='scheduled_entry')

    def __repr__(self):
        state = 'sent' if self.sent else 'pending'
        return f"<ScheduledPublicationEntry event={self.event_id} at={self.scheduled_time} {state}>"


class EventReminder(Base):
    __tablename__ = 'event_reminders'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), ForeignKey('events.id', ondelete='CASCADE'), nullable=False, index=True)
    reminder_type = Column(String(16), nullable=False)  # 'first' or 'second'
    scheduled_time = Column(DateTime, nullable=False, index=True)
    sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime)
    notify_accepted = Column(Boolean, nullable=False, default=True)
    notify_tentative = Column(Boolean, nullable=False, default=True)
    notify_declined = Column(Boolean, nullable=False, default=False)
    notify_no_response = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event = relationship('Event', back_populates='reminders')

    @property
    def recipients(self):
        return {
            'accepted': self.notify_accepted,
            'tentative': self.notify_tentative,
            'declined': self.notify_declined,
            'no_response': self.notify_no_response,
        }

    def __repr__(self):
        return f"<EventReminder {self.reminder_type} event={self.event_id} at={self.scheduled_time}>"
