"""Web push transport."""

from __future__ import annotations

from gloria_service.infra.push.client import (
    PushTarget,
    VapidKeyPair,
    WebPushClient,
    generate_vapid_keys,
)
from gloria_service.infra.push.errors import (
    PushDeliveryError,
    PushNotConfiguredError,
    PushSubscriptionGoneError,
)

__all__ = [
    "PushDeliveryError",
    "PushNotConfiguredError",
    "PushSubscriptionGoneError",
    "PushTarget",
    "VapidKeyPair",
    "WebPushClient",
    "generate_vapid_keys",
]
