"""Email transport errors."""

from __future__ import annotations


class EmailDeliveryError(Exception):
    """Every available transport failed to deliver a message.

    Raised by the email sender's raw delivery path so the circuit breaker
    records the failure; ``send()`` turns it into a queued retry.
    """

    def __init__(self, message: str, *, provider: str | None = None, error_code: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.error_code = error_code


class EmailNotConfiguredError(EmailDeliveryError):
    """No usable email transport is configured."""

    def __init__(self, message: str = "Email service not configured") -> None:
        super().__init__(message, error_code="NOT_CONFIGURED")
