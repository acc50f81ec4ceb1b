"""Base email provider protocol and abstract class.

Defines the contract that all email providers implement: ``send``,
``validate_configuration`` and ``health_check``.

Usage:
    class MyProvider(BaseEmailProvider):
        async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from email_validator import EmailNotValidError, validate_email

if TYPE_CHECKING:
    from gloria_service.infra.email.config import EmailProviderConfig
    from gloria_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailDeliveryResult:
    """Result of an email delivery attempt.

    Attributes:
        success: Whether delivery succeeded
        message_id: Provider-assigned message ID (for tracking)
        provider: Provider name (smtp, postmark, etc.)
        recipients_accepted: List of accepted recipients
        recipients_rejected: List of rejected recipients
        error: Error message if failed
        error_code: Error category for programmatic handling
        duration_ms: Time taken to send in milliseconds
        metadata: Provider-specific metadata
    """

    success: bool
    message_id: str | None
    provider: str
    recipients_accepted: list[str] = field(default_factory=list)
    recipients_rejected: list[str] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @classmethod
    def success_result(
        cls,
        message_id: str,
        provider: str,
        recipients: list[str] | None = None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=True,
            message_id=message_id,
            provider=provider,
            recipients_accepted=recipients or [],
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_result(
        cls,
        provider: str,
        error: str,
        error_code: str | None = None,
        recipients_rejected: list[str] | None = None,
        duration_ms: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=False,
            message_id=None,
            provider=provider,
            recipients_rejected=recipients_rejected or [],
            error=error,
            error_code=error_code,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )


@dataclass(frozen=True)
class ProviderCapabilities:
    """Per-send limits a provider enforces before calling its API.

    Attributes:
        supports_attachments: Whether attachments may be sent at all
        max_recipients: Maximum to+cc+bcc per send (0 = unlimited)
        max_attachment_size_mb: Maximum combined attachment size in MB
    """

    supports_attachments: bool = True
    max_recipients: int = 0
    max_attachment_size_mb: float = 25.0

    def violation(self, message: EmailMessage) -> str | None:
        """Describe the first limit ``message`` exceeds, or None."""
        recipients = len(message.all_recipients)
        if self.max_recipients and recipients > self.max_recipients:
            return f"{recipients} recipients exceed the limit of {self.max_recipients}"
        if message.attachments and not self.supports_attachments:
            return "Attachments are not supported"
        size_mb = sum(len(a.content) for a in message.attachments) / (1024 * 1024)
        if size_mb > self.max_attachment_size_mb:
            return f"Attachments of {size_mb:.1f} MB exceed the limit of {self.max_attachment_size_mb:g} MB"
        return None


@runtime_checkable
class EmailProvider(Protocol):
    """Protocol defining the email provider interface.

    Using Protocol allows duck typing and lets tests pass fakes to the
    email sender.
    """

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Send an email message. Never raises."""
        ...

    async def health_check(self) -> bool:
        """Check if the provider can reach its service. Never raises."""
        ...

    def validate_configuration(self) -> bool:
        """Cheap, offline check that the provider has what it needs."""
        ...

    @property
    def provider_name(self) -> str: ...


class BaseEmailProvider(ABC):
    """Abstract base class for email providers.

    Provides timing, logging and the never-raise guarantee around the
    provider-specific ``_do_send`` and ``_do_health_check``.

    Subclasses must implement:
    - _do_send(): Actual sending logic
    - _do_health_check(): Health check logic
    - provider_name property

    Subclasses may extend ``_configuration_errors()``.
    """

    def __init__(self, config: EmailProviderConfig) -> None:
        self._config = config
        self._capabilities = self._default_capabilities()

    @property
    @abstractmethod
    def provider_name(self) -> str: ...

    @abstractmethod
    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult: ...

    @abstractmethod
    async def _do_health_check(self) -> bool: ...

    def _default_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities()

    def _configuration_errors(self) -> list[str]:
        """List configuration problems. Subclasses extend this list."""
        errors: list[str] = []
        try:
            validate_email(self._config.from_email, check_deliverability=False)
        except EmailNotValidError as e:
            errors.append(f"Invalid sender address {self._config.from_email!r}: {e}")
        return errors

    def validate_configuration(self) -> bool:
        """Check the configuration without touching the network.

        Returns:
            True if the provider looks usable
        """
        errors = self._configuration_errors()
        if errors:
            logger.warning(
                f"{self.provider_name} provider configuration invalid",
                extra={"provider": self.provider_name, "errors": errors},
            )
            return False
        return True

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Send an email with timing and error handling.

        Args:
            message: The email message to send

        Returns:
            EmailDeliveryResult with delivery status
        """
        start_time = time.perf_counter()

        violation = self._capabilities.violation(message)
        if violation is not None:
            logger.warning(
                f"Email rejected by {self.provider_name} limits",
                extra={"provider": self.provider_name, "error": violation},
            )
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=violation,
                error_code="LIMIT_EXCEEDED",
            )

        try:
            result = await self._do_send(message)

            if result.duration_ms is None:
                result = replace(result, duration_ms=int((time.perf_counter() - start_time) * 1000))

            if result.success:
                logger.info(
                    f"Email sent via {self.provider_name}",
                    extra={
                        "message_id": result.message_id,
                        "provider": self.provider_name,
                        "recipients": len(result.recipients_accepted),
                        "duration_ms": result.duration_ms,
                    },
                )
            else:
                logger.warning(
                    f"Email send failed via {self.provider_name}",
                    extra={
                        "provider": self.provider_name,
                        "error": result.error,
                        "error_code": result.error_code,
                        "duration_ms": result.duration_ms,
                    },
                )

            return result

        except Exception as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception(
                f"Unexpected error in {self.provider_name} provider",
                extra={
                    "provider": self.provider_name,
                    "error": str(e),
                    "duration_ms": duration_ms,
                },
            )
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=str(e),
                error_code="UNEXPECTED_ERROR",
                duration_ms=duration_ms,
            )

    async def health_check(self) -> bool:
        """Check if provider is healthy with logging."""
        try:
            healthy = await self._do_health_check()
            logger.debug(
                f"{self.provider_name} health check: {'healthy' if healthy else 'unhealthy'}",
                extra={"provider": self.provider_name, "healthy": healthy},
            )
            return healthy
        except Exception as e:
            logger.warning(
                f"{self.provider_name} health check failed",
                extra={"provider": self.provider_name, "error": str(e)},
            )
            return False

    @property
    def config(self) -> EmailProviderConfig:
        return self._config

    def _sender(self, message: EmailMessage) -> tuple[str, str | None]:
        """Sender address and display name, message values first."""
        return (
            message.from_email or self._config.from_email,
            message.from_name or self._config.from_name,
        )


__all__ = [
    "BaseEmailProvider",
    "EmailDeliveryResult",
    "EmailProvider",
    "ProviderCapabilities",
]
