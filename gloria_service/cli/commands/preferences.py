"""Notification preference commands."""

import click

from gloria_service.cli.utils import coro, error, header, info, success, warning
from gloria_service.features.notifications.enums import NotificationType, Priority


@click.group(name="preferences")
def preferences() -> None:
    """Inspect preferences and maintain frequency tracking."""


@preferences.command(name="check")
@click.argument("user_profile_id")
@click.option(
    "--type",
    "notification_type",
    required=True,
    type=click.Choice([t.value for t in NotificationType]),
    help="Notification type to evaluate",
)
@click.option(
    "--priority",
    default=Priority.MEDIUM.value,
    type=click.Choice([p.value for p in Priority]),
    show_default=True,
    help="Notification priority",
)
@coro
async def check(user_profile_id: str, notification_type: str, priority: str) -> None:
    """Show whether USER_PROFILE_ID would receive a notification right now.

    \b
    Examples:
      gloria-notifications preferences check up-42 --type APPROVAL_REQUEST --priority HIGH
    """
    from gloria_service.features.notifications.preferences import get_preference_service
    from gloria_service.infra.database import get_async_session

    header(f"Preference check: {user_profile_id}")
    async with get_async_session() as session:
        result = await get_preference_service().check_preferences(
            session,
            user_profile_id,
            NotificationType(notification_type),
            Priority(priority),
        )

    if result.should_send:
        success("Would send")
        info(f"Channels: {', '.join(c.value for c in result.channels)}")
    else:
        warning(f"Blocked: {result.blocked_reason}")


@preferences.command(name="cleanup")
@click.option("--days", "days_to_keep", default=None, type=click.IntRange(min=1), help="Retention in days")
@coro
async def cleanup(days_to_keep: int | None) -> None:
    """Delete frequency tracking windows older than the retention period."""
    from gloria_service.features.notifications.preferences import get_preference_service
    from gloria_service.infra.database import get_async_session

    try:
        async with get_async_session() as session:
            deleted = await get_preference_service().cleanup_old_frequency_tracking(session, days_to_keep)
            await session.commit()
    except Exception as e:
        error(f"Cleanup failed: {e}")
        raise SystemExit(1) from e

    success(f"Deleted {deleted} tracking window(s)")
