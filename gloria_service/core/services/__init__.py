"""Service layer base classes."""

from gloria_service.core.services.base import BaseService

__all__ = ["BaseService"]
