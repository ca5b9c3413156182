from .rsvp_stream import RSVPUpdateStream

__all__ = ['RSVPUpdateStream']
