"""Web push (VAPID) settings.

Environment variables use PUSH_ prefix.
Example: PUSH_VAPID_PUBLIC_KEY=..., PUSH_VAPID_PRIVATE_KEY=...
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PushSettings(BaseSettings):
    """VAPID credentials and default notification shaping."""

    vapid_public_key: str | None = Field(
        default=None,
        description="URL-safe base64 VAPID public key handed to browsers",
    )
    vapid_private_key: SecretStr | None = Field(
        default=None,
        description="VAPID private key used to sign push requests",
    )
    vapid_subject: str = Field(
        default="mailto:admin@ypkgloria.org",
        description="VAPID subject claim (mailto: or https: URL)",
    )
    ttl_seconds: int = Field(
        default=24 * 60 * 60,
        ge=0,
        description="How long the push service keeps an undelivered message",
    )
    default_icon: str = Field(default="/icon-192x192.png", description="Default notification icon")
    default_badge: str = Field(default="/badge-72x72.png", description="Default notification badge")
    timeout: float = Field(default=10.0, gt=0, description="Push request timeout in seconds")

    model_config = SettingsConfigDict(
        env_prefix="PUSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)
