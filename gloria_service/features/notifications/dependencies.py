"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for clean dependency injection in route handlers.

Example usage:
    from gloria_service.features.notifications.dependencies import (
        CurrentUserProfileIdDep,
        PreferenceServiceDep,
        SessionDep,
    )

    @router.get("/notification-preferences")
    async def get_preferences(
        user_profile_id: CurrentUserProfileIdDep,
        session: SessionDep,
        service: PreferenceServiceDep,
    ) -> NotificationPreferenceResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from gloria_service.core.dependencies.database import get_db_session
from gloria_service.features.notifications.channels import PushSender, get_push_sender
from gloria_service.features.notifications.fallback import FallbackQueue, get_fallback_queue
from gloria_service.features.notifications.preferences import PreferenceService, get_preference_service
from gloria_service.features.notifications.service import NotificationService, get_notification_service
from gloria_service.infra.resilience import CircuitBreakerRegistry, get_circuit_registry

# Database session dependency
SessionDep = Annotated[AsyncSession, Depends(get_db_session)]


def get_current_user_profile_id(
    x_user_profile_id: Annotated[
        str,
        Header(
            alias="X-User-Profile-Id",
            min_length=1,
            max_length=64,
            description="Profile id of the calling user, set by the API gateway",
        ),
    ],
) -> str:
    return x_user_profile_id


CurrentUserProfileIdDep = Annotated[str, Depends(get_current_user_profile_id)]

# Service dependencies
PreferenceServiceDep = Annotated[PreferenceService, Depends(get_preference_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
PushSenderDep = Annotated[PushSender, Depends(get_push_sender)]
FallbackQueueDep = Annotated[FallbackQueue, Depends(get_fallback_queue)]
CircuitRegistryDep = Annotated[CircuitBreakerRegistry, Depends(get_circuit_registry)]


__all__ = [
    "CircuitRegistryDep",
    "CurrentUserProfileIdDep",
    "FallbackQueueDep",
    "NotificationServiceDep",
    "PreferenceServiceDep",
    "PushSenderDep",
    "SessionDep",
    "get_current_user_profile_id",
]
