"""
eventcast: schedules and publishes event announcements to chat channels,
keeps reminders in step with event edits and reconciles RSVP state.
"""

__version__ = '1.0.0'
