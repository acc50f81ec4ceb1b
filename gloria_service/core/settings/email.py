"""Email delivery settings.

Environment variables use EMAIL_ prefix.
Example: EMAIL_PROVIDER=postmark, EMAIL_API_KEY=..., EMAIL_SMTP_HOST=smtp.gmail.com
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

EmailProviderName = Literal["smtp", "console", "postmark", "sendgrid"]


class EmailSettings(BaseSettings):
    """Email provider and SMTP fallback configuration.

    The configured ``provider`` is tried first. A directly configured SMTP
    transport (host plus credentials) is the fallback when the provider is
    missing, misconfigured or fails.
    """

    provider: EmailProviderName | None = Field(
        default=None,
        description="Primary email provider: smtp, console, postmark or sendgrid",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="API key / server token for HTTP providers (postmark, sendgrid)",
    )
    api_endpoint: str | None = Field(
        default=None,
        description="Override the HTTP provider base URL",
    )

    smtp_host: str | None = Field(default=None, max_length=255, description="SMTP server hostname")
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port (587 for TLS, 465 for SSL, 25 for plain)",
    )
    smtp_username: str | None = Field(default=None, max_length=255, description="SMTP username")
    smtp_password: SecretStr | None = Field(default=None, description="SMTP password")
    use_tls: bool = Field(default=True, description="Use STARTTLS (port 587)")
    use_ssl: bool = Field(default=False, description="Use implicit SSL/TLS (port 465)")
    validate_certs: bool = Field(default=True, description="Validate SSL/TLS certificates")

    from_email: str = Field(
        default="noreply@ypkgloria.org",
        description="Default sender email address",
    )
    from_name: str = Field(
        default="YPK Gloria System",
        max_length=100,
        description="Default sender display name",
    )
    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Transport timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def validate_tls_ssl_exclusive(self) -> EmailSettings:
        """Ensure TLS and SSL are mutually exclusive."""
        if self.use_tls and self.use_ssl:
            msg = "use_tls and use_ssl are mutually exclusive"
            raise ValueError(msg)
        return self

    @property
    def smtp_configured(self) -> bool:
        """SMTP fallback needs a host and credentials."""
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)
