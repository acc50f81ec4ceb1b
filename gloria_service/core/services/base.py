"""Base service class for business logic."""

from __future__ import annotations

import logging

from gloria_service.infra.logging import get_lazy_logger


class BaseService:
    """Base class for all service classes.

    Loggers:
        - self.logger: Standard logger for INFO/WARNING/ERROR (always evaluated)
        - self._lazy: Lazy logger for DEBUG (zero overhead when DEBUG disabled)

    Example:
        class PreferenceService(BaseService):
            def __init__(self, repository: NotificationPreferenceRepository):
                super().__init__()
                self.repository = repository

            async def check(self, session, user_profile_id: str):
                self.logger.info("Checking preferences", extra={"user_profile_id": user_profile_id})
                self._lazy.debug(lambda: f"State: {expensive_computation()}")
    """

    def __init__(self) -> None:
        class_name = self.__class__.__name__
        self.logger = logging.getLogger(class_name)
        self._lazy = get_lazy_logger(class_name)
