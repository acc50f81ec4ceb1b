"""API routers for notification preferences and delivery operations.

Preference Endpoints (caller identified by ``X-User-Profile-Id``):
- GET  /notification-preferences - Current preferences (created lazily)
- PUT  /notification-preferences - Partial update
- PUT  /notification-preferences/channels - Upsert per-type overrides
- POST /notification-preferences/unsubscribe - Unsubscribe, returns token
- POST /notification-preferences/resubscribe - Resubscribe by token
- GET  /notification-preferences/check - Evaluate for a type and priority
- GET|PUT /notification-preferences/admin/{user_profile_id}
- POST /notification-preferences/cleanup - Purge old frequency windows

Delivery Endpoints:
- POST /notifications/send - Check, deliver and track one notification
- GET|POST|DELETE /notifications/push/subscriptions
- GET  /notifications/push/vapid-public-key
- GET  /notifications/queue, /notifications/queue/statistics, /notifications/queue/dead-letters
- POST /notifications/queue/{entry_id}/retry
- DELETE /notifications/queue
- GET  /notifications/circuits
- POST /notifications/circuits/{name}/reset, /notifications/circuits/{name}/force-close
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query, status

from gloria_service.core.exceptions import NotFoundException
from gloria_service.core.settings import get_notification_settings
from gloria_service.features.notifications.dependencies import (
    CircuitRegistryDep,
    CurrentUserProfileIdDep,
    FallbackQueueDep,
    NotificationServiceDep,
    PreferenceServiceDep,
    PushSenderDep,
    SessionDep,
)
from gloria_service.features.notifications.enums import NotificationType, Priority
from gloria_service.features.notifications.fallback import FallbackNotification
from gloria_service.features.notifications.models import NotificationPreference
from gloria_service.features.notifications.schemas import (
    ChannelPreferenceUpdate,
    CircuitMetricsResponse,
    CleanupResponse,
    ClearQueueResponse,
    FallbackEntryResponse,
    NotificationPreferenceResponse,
    NotificationPreferenceUpdate,
    PreferenceCheckResult,
    ProcessNowResponse,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionResponse,
    QueueStatistics,
    ResubscribeRequest,
    SendNotificationRequest,
    SendNotificationResponse,
    UnsubscribeRequest,
    UnsubscribeResponse,
    VapidPublicKeyResponse,
)
from gloria_service.utils.runtime_dependencies import require_runtime_dependency

require_runtime_dependency(
    CircuitRegistryDep,
    CurrentUserProfileIdDep,
    FallbackQueueDep,
    NotificationServiceDep,
    PreferenceServiceDep,
    PushSenderDep,
    SessionDep,
)

logger = logging.getLogger(__name__)

preferences_router = APIRouter(
    prefix="/notification-preferences",
    tags=["notification-preferences"],
)

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)


def _preference_response(preference: NotificationPreference) -> NotificationPreferenceResponse:
    response = NotificationPreferenceResponse.model_validate(preference)
    return response.model_copy(
        update={
            "unsubscribes": [UnsubscribeResponse.model_validate(u) for u in preference.active_unsubscribes()],
        }
    )


def _entry_response(entry: FallbackNotification) -> FallbackEntryResponse:
    return FallbackEntryResponse(
        id=entry.id,
        type=entry.type,
        recipient=entry.recipient,
        retry_count=entry.retry_count,
        max_retries=entry.max_retries,
        last_attempt=entry.last_attempt,
        next_attempt=entry.next_attempt,
        error=entry.error,
        created_at=entry.created_at,
        metadata=entry.metadata,
    )


# ============================================================================
# Preference Endpoints
# ============================================================================


@preferences_router.get(
    "",
    response_model=NotificationPreferenceResponse,
    summary="Get my notification preferences",
    description="Returns the caller's preferences, creating defaults on first access.",
)
async def get_my_preferences(
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> NotificationPreferenceResponse:
    preference = await service.get_or_create_preferences(session, user_profile_id)
    await session.commit()
    return _preference_response(preference)


@preferences_router.put(
    "",
    response_model=NotificationPreferenceResponse,
    summary="Update my notification preferences",
    description="""
Partial update. Omitted fields keep their value.

Enabling quiet hours requires both `quiet_hours_start` and `quiet_hours_end`
(HH:MM, interpreted in `timezone`). Included `channel_preferences` are
upserted by notification type.
""",
    responses={400: {"description": "Quiet hours enabled without start and end"}},
)
async def update_my_preferences(
    update: NotificationPreferenceUpdate,
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> NotificationPreferenceResponse:
    preference = await service.update_preferences(session, user_profile_id, update)
    await session.commit()
    return _preference_response(preference)


@preferences_router.put(
    "/channels",
    response_model=NotificationPreferenceResponse,
    summary="Upsert per-type channel preferences",
)
async def update_my_channel_preferences(
    channel_preferences: list[ChannelPreferenceUpdate],
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> NotificationPreferenceResponse:
    preference = await service.update_channel_preferences(session, user_profile_id, channel_preferences)
    await session.commit()
    return _preference_response(preference)


@preferences_router.post(
    "/unsubscribe",
    response_model=UnsubscribeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Unsubscribe",
    description="""
Unsubscribe from one notification type, one channel, or everything (both null).
The returned `unsubscribe_token` reverses it through `/resubscribe`.
""",
    responses={400: {"description": "Already unsubscribed with the same scope"}},
)
async def unsubscribe(
    request: UnsubscribeRequest,
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> UnsubscribeResponse:
    record = await service.unsubscribe(
        session,
        user_profile_id,
        notification_type=request.notification_type,
        channel=request.channel,
        reason=request.reason,
    )
    await session.commit()
    return UnsubscribeResponse.model_validate(record)


@preferences_router.post(
    "/resubscribe",
    response_model=UnsubscribeResponse,
    summary="Resubscribe by token",
    responses={
        400: {"description": "Already resubscribed"},
        404: {"description": "Unknown token"},
    },
)
async def resubscribe(
    request: ResubscribeRequest,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> UnsubscribeResponse:
    record = await service.resubscribe(session, request.token)
    await session.commit()
    return UnsubscribeResponse.model_validate(record)


@preferences_router.get(
    "/check",
    response_model=PreferenceCheckResult,
    summary="Check whether a notification would be delivered",
)
async def check_my_preferences(
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
    notification_type: Annotated[NotificationType, Query(description="Notification type to evaluate")],
    priority: Annotated[Priority, Query(description="Notification priority")] = Priority.MEDIUM,
) -> PreferenceCheckResult:
    return await service.check_preferences(session, user_profile_id, notification_type, priority)


@preferences_router.get(
    "/admin/{user_profile_id}",
    response_model=NotificationPreferenceResponse,
    summary="Get a user's preferences",
)
async def admin_get_preferences(
    user_profile_id: str,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> NotificationPreferenceResponse:
    preference = await service.get_or_create_preferences(session, user_profile_id)
    await session.commit()
    return _preference_response(preference)


@preferences_router.put(
    "/admin/{user_profile_id}",
    response_model=NotificationPreferenceResponse,
    summary="Update a user's preferences",
)
async def admin_update_preferences(
    user_profile_id: str,
    update: NotificationPreferenceUpdate,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> NotificationPreferenceResponse:
    preference = await service.update_preferences(session, user_profile_id, update)
    await session.commit()
    logger.info("Preferences updated by administrator", extra={"user_profile_id": user_profile_id})
    return _preference_response(preference)


@preferences_router.post(
    "/cleanup",
    response_model=CleanupResponse,
    summary="Purge old frequency tracking windows",
)
async def cleanup_frequency_tracking(
    session: SessionDep,
    service: PreferenceServiceDep,
    days_to_keep: Annotated[int | None, Query(ge=1, le=365, description="Retention in days")] = None,
) -> CleanupResponse:
    days = days_to_keep or get_notification_settings().tracking_retention_days
    deleted = await service.cleanup_old_frequency_tracking(session, days)
    await session.commit()
    return CleanupResponse(deleted=deleted, days_to_keep=days)


# ============================================================================
# Delivery Endpoints
# ============================================================================


@router.post(
    "/send",
    response_model=SendNotificationResponse,
    summary="Send a notification",
    description="""
Evaluates the recipient's preferences, delivers on each allowed EMAIL/PUSH
channel and counts the notification against the recipient's limits.

Failed deliveries are queued for retry and reported as `false`.
""",
)
async def send_notification(
    request: SendNotificationRequest,
    session: SessionDep,
    service: NotificationServiceDep,
) -> SendNotificationResponse:
    response = await service.send_notification(session, request)
    await session.commit()
    return response


@router.post(
    "/push/subscriptions",
    response_model=PushSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a browser push subscription",
)
async def create_push_subscription(
    subscription: PushSubscriptionCreate,
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    sender: PushSenderDep,
) -> PushSubscriptionResponse:
    record = await sender.save_subscription(session, user_profile_id, subscription)
    await session.commit()
    return PushSubscriptionResponse.model_validate(record)


@router.get(
    "/push/subscriptions",
    response_model=list[PushSubscriptionResponse],
    summary="List my push subscriptions",
)
async def list_push_subscriptions(
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    sender: PushSenderDep,
) -> list[PushSubscriptionResponse]:
    records = await sender.get_user_subscriptions(session, user_profile_id)
    return [PushSubscriptionResponse.model_validate(r) for r in records]


@router.delete(
    "/push/subscriptions",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a push subscription",
    responses={404: {"description": "Subscription not found"}},
)
async def delete_push_subscription(
    request: PushSubscriptionDelete,
    user_profile_id: CurrentUserProfileIdDep,
    session: SessionDep,
    sender: PushSenderDep,
) -> None:
    removed = await sender.remove_subscription(session, request.endpoint)
    if not removed:
        raise NotFoundException(detail="Push subscription not found", type="push-subscription-not-found")
    await session.commit()
    logger.info("Push subscription removed", extra={"user_profile_id": user_profile_id})


@router.get(
    "/push/vapid-public-key",
    response_model=VapidPublicKeyResponse,
    summary="VAPID public key for PushManager.subscribe()",
)
async def get_vapid_public_key(sender: PushSenderDep) -> VapidPublicKeyResponse:
    key = sender.get_vapid_public_key()
    return VapidPublicKeyResponse(public_key=key, configured=sender.transport_ready)


@router.get(
    "/queue",
    response_model=list[FallbackEntryResponse],
    summary="List queued retries",
)
async def list_queue(queue: FallbackQueueDep) -> list[FallbackEntryResponse]:
    return [_entry_response(e) for e in queue.get_entries()]


@router.get(
    "/queue/statistics",
    response_model=QueueStatistics,
    summary="Retry queue statistics",
)
async def get_queue_statistics(queue: FallbackQueueDep) -> QueueStatistics:
    return QueueStatistics(**queue.get_queue_statistics())


@router.get(
    "/queue/dead-letters",
    response_model=list[FallbackEntryResponse],
    summary="Recent dead letters",
    description="Most recent exhausted notifications kept in memory. All dead letters are in the audit log.",
)
async def list_dead_letters(queue: FallbackQueueDep) -> list[FallbackEntryResponse]:
    return [_entry_response(e) for e in queue.get_dead_letter_entries()]


@router.post(
    "/queue/{entry_id}/retry",
    response_model=ProcessNowResponse,
    summary="Retry a queued notification now",
    responses={
        404: {"description": "No queued notification with this id"},
        409: {"description": "A retry for this notification is already running"},
    },
)
async def retry_queued_notification(entry_id: str, queue: FallbackQueueDep) -> ProcessNowResponse:
    delivered = await queue.process_notification_now(entry_id)
    return ProcessNowResponse(id=entry_id, delivered=delivered)


@router.delete(
    "/queue",
    response_model=ClearQueueResponse,
    summary="Drop every queued retry",
)
async def clear_queue(queue: FallbackQueueDep) -> ClearQueueResponse:
    return ClearQueueResponse(cleared=queue.clear())


@router.get(
    "/circuits",
    response_model=CircuitMetricsResponse,
    summary="Circuit breaker metrics",
)
async def get_circuits(registry: CircuitRegistryDep) -> CircuitMetricsResponse:
    return CircuitMetricsResponse(circuits=registry.get_all_metrics())


def _unknown_circuit(name: str) -> NotFoundException:
    return NotFoundException(detail=f"Circuit '{name}' not found", type="circuit-not-found")


@router.post(
    "/circuits/{name}/reset",
    response_model=CircuitMetricsResponse,
    summary="Reset a circuit breaker",
    responses={404: {"description": "Unknown circuit"}},
)
async def reset_circuit(name: str, registry: CircuitRegistryDep) -> CircuitMetricsResponse:
    try:
        await registry.reset_circuit(name)
    except KeyError as e:
        raise _unknown_circuit(name) from e
    return CircuitMetricsResponse(circuits={name: registry.get_all_metrics()[name]})


@router.post(
    "/circuits/{name}/force-close",
    response_model=CircuitMetricsResponse,
    summary="Force a circuit breaker closed",
    responses={404: {"description": "Unknown circuit"}},
)
async def force_close_circuit(name: str, registry: CircuitRegistryDep) -> CircuitMetricsResponse:
    try:
        await registry.force_close(name)
    except KeyError as e:
        raise _unknown_circuit(name) from e
    return CircuitMetricsResponse(circuits={name: registry.get_all_metrics()[name]})
