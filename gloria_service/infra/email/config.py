"""Resolved provider configuration.

Providers never read settings directly. The email sender resolves an
``EmailProviderConfig`` from EmailSettings (once for the primary provider,
once for the SMTP fallback) and the factory caches providers per config.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gloria_service.core.settings import EmailSettings


@dataclass(frozen=True)
class EmailProviderConfig:
    """Everything a provider needs to deliver mail."""

    provider: str
    from_email: str
    from_name: str | None = None
    reply_to: str | None = None
    api_key: str | None = None
    api_endpoint: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    validate_certs: bool = True
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: EmailSettings, provider: str | None = None) -> EmailProviderConfig:
        """Resolve the config for ``provider`` (defaults to the configured one)."""
        return cls(
            provider=provider or settings.provider or "smtp",
            from_email=settings.from_email,
            from_name=settings.from_name,
            api_key=settings.api_key.get_secret_value() if settings.api_key else None,
            api_endpoint=settings.api_endpoint,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_username=settings.smtp_username,
            smtp_password=settings.smtp_password.get_secret_value() if settings.smtp_password else None,
            smtp_use_tls=settings.use_tls,
            smtp_use_ssl=settings.use_ssl,
            validate_certs=settings.validate_certs,
            timeout=settings.timeout,
        )

    def for_provider(self, provider: str) -> EmailProviderConfig:
        return replace(self, provider=provider)

    @property
    def cache_key(self) -> str:
        parts = [self.provider, self.from_email]
        if self.provider == "smtp":
            parts.extend([self.smtp_host or "", str(self.smtp_port), self.smtp_username or ""])
        else:
            parts.append(self.api_endpoint or "")
        return ":".join(parts)
