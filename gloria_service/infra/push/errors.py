"""Web push delivery errors."""

from __future__ import annotations


class PushDeliveryError(Exception):
    """Raised when push delivery fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PushSubscriptionGoneError(PushDeliveryError):
    """Raised when the push service returns 410 Gone or 404 Not Found.

    The subscription will never accept messages again, so retrying is pointless.
    """

    permanent = True

    def __init__(self, endpoint: str, *, status_code: int = 410) -> None:
        self.endpoint = endpoint
        super().__init__(f"Push subscription gone: {endpoint[:60]}", status_code=status_code)


class PushNotConfiguredError(PushDeliveryError):
    """VAPID keys are missing."""

    def __init__(self, message: str = "Push service not configured") -> None:
        super().__init__(message)
