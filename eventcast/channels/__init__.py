from .base import (
    ChannelAdapter,
    ChannelAdapterError,
    ChannelTimeoutError,
    MessageNotFoundError,
    ChannelError,
    ChannelTarget,
    EventMessage,
)
from .message_cache import MessageIdCache

__all__ = [
    'ChannelAdapter',
    'ChannelAdapterError',
    'ChannelTimeoutError',
    'MessageNotFoundError',
    'ChannelError',
    'ChannelTarget',
    'EventMessage',
    'MessageIdCache',
]
