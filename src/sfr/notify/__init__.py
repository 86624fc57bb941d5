from .base import Publisher
from .console import LogPublisher
from .formatter import format_event_message
from .neynar import NeynarPublisher, PublishError

__all__ = [
    "LogPublisher",
    "NeynarPublisher",
    "PublishError",
    "Publisher",
    "format_event_message",
]
