"""Email provider factory keyed by provider name.

Usage:
    factory = get_provider_factory()
    provider = factory.get_provider(config)  # config.provider == "postmark"
    result = await provider.send(message)

    factory.list_providers()  # ["smtp", "console", "postmark", "sendgrid"]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .console import ConsoleProvider
from .postmark import PostmarkProvider
from .sendgrid import SendGridProvider
from .smtp import SMTPProvider

if TYPE_CHECKING:
    from gloria_service.infra.email.config import EmailProviderConfig

    from .base import BaseEmailProvider, EmailProvider

logger = logging.getLogger(__name__)


class EmailProviderFactory:
    """Factory for creating and caching email providers.

    Providers are cached per configuration so the email sender and the
    fallback queue share one instance per transport.
    """

    def __init__(self) -> None:
        self._registry: dict[str, type[BaseEmailProvider]] = {}
        self._provider_cache: dict[str, EmailProvider] = {}

        self.register("smtp", SMTPProvider)
        self.register("console", ConsoleProvider)
        self.register("postmark", PostmarkProvider)
        self.register("sendgrid", SendGridProvider)

    def register(self, provider_type: str, provider_class: type[BaseEmailProvider]) -> None:
        """Register a provider class under a name."""
        self._registry[provider_type] = provider_class
        logger.debug("Registered email provider: %s", provider_type)

    def unregister(self, provider_type: str) -> bool:
        if provider_type not in self._registry:
            return False
        del self._registry[provider_type]
        self.invalidate_cache(provider_type)
        logger.debug("Unregistered email provider: %s", provider_type)
        return True

    def get_provider(self, config: EmailProviderConfig) -> EmailProvider:
        """Get or create a provider for the given configuration.

        Raises:
            ValueError: If the provider name is unknown or the provider
                rejects the configuration.
        """
        provider_type = config.provider
        if provider_type not in self._registry:
            msg = f"Unknown provider type: {provider_type}. Available: {self.list_providers()}"
            raise ValueError(msg)

        cache_key = config.cache_key
        cached = self._provider_cache.get(cache_key)
        if cached is not None:
            return cached

        provider = self._registry[provider_type](config)
        self._provider_cache[cache_key] = provider
        logger.debug(f"Created new {provider_type} provider")
        return provider

    def invalidate_cache(self, provider_type: str | None = None) -> int:
        """Drop cached providers, all of them or one type.

        Returns:
            Number of entries cleared
        """
        if provider_type is None:
            count = len(self._provider_cache)
            self._provider_cache.clear()
            return count

        keys = [key for key in self._provider_cache if key.startswith(f"{provider_type}:")]
        for key in keys:
            del self._provider_cache[key]
        return len(keys)

    def list_providers(self) -> list[str]:
        return list(self._registry.keys())

    def is_available(self, provider_type: str) -> bool:
        return provider_type in self._registry

    def get_cache_stats(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        for key in self._provider_cache:
            provider_type = key.split(":")[0]
            by_type[provider_type] = by_type.get(provider_type, 0) + 1

        return {
            "total_cached": len(self._provider_cache),
            "by_type": by_type,
            "registered_providers": self.list_providers(),
        }


_factory: EmailProviderFactory | None = None


def get_provider_factory() -> EmailProviderFactory:
    """Get the singleton provider factory, creating it on first use."""
    global _factory
    if _factory is None:
        _factory = initialize_provider_factory()
    return _factory


def initialize_provider_factory() -> EmailProviderFactory:
    """(Re)create the singleton provider factory."""
    global _factory
    _factory = EmailProviderFactory()
    logger.info(
        "Email provider factory initialized",
        extra={"available_providers": _factory.list_providers()},
    )
    return _factory


__all__ = [
    "EmailProviderFactory",
    "get_provider_factory",
    "initialize_provider_factory",
]
