"""VAPID web push transport built on pywebpush.

pywebpush is synchronous (requests underneath), so each delivery runs in a
worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
from typing import TYPE_CHECKING, Any

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid
from py_vapid.utils import b64urlencode
from pywebpush import WebPushException, webpush

from gloria_service.infra.push.errors import (
    PushDeliveryError,
    PushNotConfiguredError,
    PushSubscriptionGoneError,
)

if TYPE_CHECKING:
    from gloria_service.core.settings import PushSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PushTarget:
    """Browser subscription as stored: endpoint plus encryption keys."""

    endpoint: str
    p256dh: str
    auth: str

    def to_subscription_info(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(frozen=True, slots=True)
class VapidKeyPair:
    public_key: str
    private_key: str


def generate_vapid_keys() -> VapidKeyPair:
    """Generate a VAPID key pair encoded the way browsers and pywebpush expect.

    The public key is the base64url uncompressed P-256 point (the
    ``applicationServerKey``); the private key is the base64url raw scalar.
    """
    vapid = Vapid()
    vapid.generate_keys()
    public_bytes = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_value = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return VapidKeyPair(public_key=b64urlencode(public_bytes), private_key=b64urlencode(private_value))


class WebPushClient:
    """Send encrypted web push messages with VAPID authentication.

    Example:
        client = WebPushClient.from_settings(get_push_settings())
        await client.send(PushTarget(endpoint, p256dh, auth), {"notification": {...}})
    """

    def __init__(
        self,
        *,
        vapid_public_key: str | None,
        vapid_private_key: str | None,
        vapid_subject: str,
        ttl: int = 86400,
        timeout: float = 10.0,
    ) -> None:
        self.vapid_public_key = vapid_public_key
        self._vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: PushSettings) -> WebPushClient:
        return cls(
            vapid_public_key=settings.vapid_public_key,
            vapid_private_key=(
                settings.vapid_private_key.get_secret_value() if settings.vapid_private_key else None
            ),
            vapid_subject=settings.vapid_subject,
            ttl=settings.ttl_seconds,
            timeout=settings.timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.vapid_public_key and self._vapid_private_key)

    async def send(self, target: PushTarget, payload: dict[str, Any] | str, *, ttl: int | None = None) -> None:
        """Deliver one message to one subscription.

        Raises:
            PushNotConfiguredError: If VAPID keys are missing.
            PushSubscriptionGoneError: If the push service answered 410 or 404.
            PushDeliveryError: If delivery failed for other reasons.
        """
        if not self.is_configured:
            raise PushNotConfiguredError
        data = payload if isinstance(payload, str) else json.dumps(payload)
        await asyncio.to_thread(self._send_sync, target, data, ttl or self.ttl)

    def _send_sync(self, target: PushTarget, data: str, ttl: int) -> None:
        try:
            webpush(
                subscription_info=target.to_subscription_info(),
                data=data,
                vapid_private_key=self._vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in (410, 404):
                raise PushSubscriptionGoneError(target.endpoint, status_code=status_code) from e
            raise PushDeliveryError(str(e), status_code=status_code) from e
        except Exception as e:
            raise PushDeliveryError(str(e)) from e

    async def health_check(self) -> bool:
        """Check that the private key loads. Push services have no ping endpoint."""
        if not self.is_configured:
            return False
        try:
            await asyncio.to_thread(Vapid.from_string, self._vapid_private_key)
        except Exception as e:
            logger.warning("VAPID private key failed to load", extra={"error": str(e)})
            return False
        return True
