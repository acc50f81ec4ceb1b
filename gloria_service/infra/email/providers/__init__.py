"""Email provider implementations.

- SMTP: Standard SMTP/SMTPS delivery (aiosmtplib), also the fallback transport
- Console: Log emails (development)
- Postmark: Postmark HTTP API
- SendGrid: SendGrid HTTP API

Postmark and SendGrid share the httpx round trip in ``HttpEmailProvider``.
"""

from .base import (
    BaseEmailProvider,
    EmailDeliveryResult,
    EmailProvider,
    ProviderCapabilities,
)
from .console import ConsoleProvider
from .factory import EmailProviderFactory, get_provider_factory, initialize_provider_factory
from .http import HttpEmailProvider
from .postmark import PostmarkProvider
from .sendgrid import SendGridProvider
from .smtp import SMTPProvider

__all__ = [
    "BaseEmailProvider",
    "ConsoleProvider",
    "EmailDeliveryResult",
    "EmailProvider",
    "EmailProviderFactory",
    "HttpEmailProvider",
    "PostmarkProvider",
    "ProviderCapabilities",
    "SMTPProvider",
    "SendGridProvider",
    "get_provider_factory",
    "initialize_provider_factory",
]
