"""Channel senders for EMAIL and PUSH delivery.

Both senders route every delivery through their circuit breaker and hand
failures to the retry queue; ``send`` never raises for delivery failures.
"""

from __future__ import annotations

from gloria_service.features.notifications.channels.base import ChannelSender
from gloria_service.features.notifications.channels.email import (
    EmailOptions,
    EmailSender,
    get_email_sender,
    set_email_sender,
)
from gloria_service.features.notifications.channels.push import (
    PushOptions,
    PushSender,
    build_push_message,
    get_push_sender,
    set_push_sender,
)

__all__ = [
    "ChannelSender",
    "EmailOptions",
    "EmailSender",
    "PushOptions",
    "PushSender",
    "build_push_message",
    "get_email_sender",
    "get_push_sender",
    "set_email_sender",
    "set_push_sender",
]
