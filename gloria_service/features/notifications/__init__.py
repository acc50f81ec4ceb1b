"""Notification delivery pipeline.

This feature decides whether a user gets a notification and delivers it:
- Per-user preferences: global switch, quiet hours, default channels,
  per-type overrides, unsubscribes and hourly/daily limits
- Email and web push senders, each behind its own circuit breaker
- A retry queue for failed deliveries (durable on RabbitMQ through taskiq,
  in memory otherwise) with exhausted entries written to the audit log

Architecture:
    - Models: NotificationPreference, NotificationChannelPreference,
      NotificationUnsubscribe, NotificationFrequencyTracking, PushSubscription
    - Preferences: PreferenceService evaluates and maintains preferences
    - Channels: EmailSender, PushSender
    - Fallback: FallbackQueue, DurableQueue, record_dead_letter
    - Service: NotificationService orchestrates check, delivery and tracking

Example:
    ```python
    service = get_notification_service()
    response = await service.send_notification(
        session,
        SendNotificationRequest(
            user_profile_id="up-42",
            notification_type=NotificationType.APPROVAL_REQUEST,
            priority=Priority.HIGH,
            title="Leave request",
            message="Budi requested 2 days of leave",
            email=["manager@ypkgloria.org"],
        ),
    )
    await session.commit()
    ```
"""
