"""Email transport layer: message models, provider config and providers."""

from __future__ import annotations

from gloria_service.infra.email.config import EmailProviderConfig
from gloria_service.infra.email.errors import EmailDeliveryError, EmailNotConfiguredError
from gloria_service.infra.email.providers import (
    EmailDeliveryResult,
    EmailProvider,
    EmailProviderFactory,
    get_provider_factory,
)
from gloria_service.infra.email.schemas import EmailAttachment, EmailMessage, EmailPriority

__all__ = [
    "EmailAttachment",
    "EmailDeliveryError",
    "EmailDeliveryResult",
    "EmailMessage",
    "EmailNotConfiguredError",
    "EmailPriority",
    "EmailProvider",
    "EmailProviderConfig",
    "EmailProviderFactory",
    "get_provider_factory",
]
