"""notification pipeline tables

Revision ID: 5b1e0c7a9d21
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b1e0c7a9d21'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)')


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of record creation',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of last update',
        ),
    ]


def _preference_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ['preference_id'],
        ['notification_preferences.id'],
        name=op.f(f'fk_{table}_preference_id_notification_preferences'),
        ondelete='CASCADE',
    )


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'notification_preferences',
        sa.Column(
            'user_profile_id',
            sa.String(length=64),
            nullable=False,
            comment='User profile that owns these preferences',
        ),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('quiet_hours_enabled', sa.Boolean(), nullable=False),
        sa.Column('quiet_hours_start', sa.String(length=5), nullable=True, comment='HH:MM'),
        sa.Column('quiet_hours_end', sa.String(length=5), nullable=True, comment='HH:MM'),
        sa.Column(
            'timezone',
            sa.String(length=64),
            nullable=False,
            comment='IANA timezone for quiet hours',
        ),
        sa.Column(
            'default_channels',
            postgresql.ARRAY(sa.String(length=20)),
            nullable=False,
            comment='Channels used when no type-specific preference exists',
        ),
        sa.Column('max_daily_notifications', sa.Integer(), nullable=True),
        sa.Column('max_hourly_notifications', sa.Integer(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_preferences')),
        sa.UniqueConstraint('user_profile_id', name=op.f('uq_notification_preferences_user_profile_id')),
    )

    op.create_table(
        'notification_channel_preferences',
        sa.Column('preference_id', sa.Uuid(), nullable=False),
        sa.Column('notification_type', sa.String(length=50), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('channels', postgresql.ARRAY(sa.String(length=20)), nullable=False),
        sa.Column(
            'priority_threshold',
            sa.String(length=20),
            nullable=True,
            comment='Minimum priority delivered for this type',
        ),
        sa.Column('max_daily_limit', sa.Integer(), nullable=True, comment='Daily cap for this type'),
        _id_column(),
        *_timestamp_columns(),
        _preference_fk('notification_channel_preferences'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_channel_preferences')),
        sa.UniqueConstraint('preference_id', 'notification_type', name='uq_channel_pref_type'),
    )
    op.create_index(
        op.f('ix_notification_channel_preferences_preference_id'),
        'notification_channel_preferences',
        ['preference_id'],
        unique=False,
    )

    op.create_table(
        'notification_unsubscribes',
        sa.Column('preference_id', sa.Uuid(), nullable=False),
        sa.Column('notification_type', sa.String(length=50), nullable=True),
        sa.Column('channel', sa.String(length=20), nullable=True),
        sa.Column('unsubscribe_token', sa.String(length=64), nullable=False),
        sa.Column('unsubscribed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resubscribed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        _preference_fk('notification_unsubscribes'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_unsubscribes')),
        sa.UniqueConstraint('unsubscribe_token', name=op.f('uq_notification_unsubscribes_unsubscribe_token')),
    )
    op.create_index(
        op.f('ix_notification_unsubscribes_preference_id'),
        'notification_unsubscribes',
        ['preference_id'],
        unique=False,
    )
    # One active unsubscribe per scope; resubscribed rows are history
    op.create_index(
        'uq_active_unsubscribe',
        'notification_unsubscribes',
        ['preference_id', 'notification_type', 'channel'],
        unique=True,
        postgresql_where=sa.text('resubscribed_at IS NULL'),
    )

    op.create_table(
        'notification_frequency_tracking',
        sa.Column('preference_id', sa.Uuid(), nullable=False),
        sa.Column('notification_type', sa.String(length=50), nullable=False),
        sa.Column('window_type', sa.String(length=10), nullable=False),
        sa.Column(
            'window_start',
            sa.DateTime(timezone=True),
            nullable=False,
            comment='UTC start of the hour or day',
        ),
        sa.Column('count', sa.Integer(), nullable=False),
        _id_column(),
        *_timestamp_columns(),
        _preference_fk('notification_frequency_tracking'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_frequency_tracking')),
        sa.UniqueConstraint(
            'preference_id',
            'notification_type',
            'window_type',
            'window_start',
            name='uq_frequency_window',
        ),
    )
    op.create_index(
        op.f('ix_notification_frequency_tracking_window_start'),
        'notification_frequency_tracking',
        ['window_start'],
        unique=False,
    )

    op.create_table(
        'push_subscriptions',
        sa.Column('user_profile_id', sa.String(length=64), nullable=False),
        sa.Column('endpoint', sa.String(length=2048), nullable=False),
        sa.Column('p256dh', sa.String(length=255), nullable=False),
        sa.Column('auth', sa.String(length=255), nullable=False),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        _id_column(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_push_subscriptions')),
        sa.UniqueConstraint('endpoint', name=op.f('uq_push_subscriptions_endpoint')),
    )
    op.create_index(
        op.f('ix_push_subscriptions_user_profile_id'),
        'push_subscriptions',
        ['user_profile_id'],
        unique=False,
    )

    op.create_table(
        'audit_logs',
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='When the action was recorded',
        ),
        sa.Column('actor_id', sa.String(length=255), nullable=False, comment='Actor that performed the action'),
        sa.Column('action', sa.String(length=20), nullable=False, comment='Action performed'),
        sa.Column('module', sa.String(length=100), nullable=False, comment='Writing subsystem'),
        sa.Column('entity_type', sa.String(length=100), nullable=False, comment='Type of entity affected'),
        sa.Column('entity_id', sa.String(length=255), nullable=True, comment='ID of the affected entity'),
        sa.Column('entity_display', sa.String(length=500), nullable=True, comment='Human-readable entity label'),
        sa.Column(
            'metadata',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment='Additional context',
        ),
        _id_column(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_audit_logs')),
    )
    for column in ('created_at', 'actor_id', 'module', 'entity_type', 'entity_id'):
        op.create_index(op.f(f'ix_audit_logs_{column}'), 'audit_logs', [column], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    for column in ('entity_id', 'entity_type', 'module', 'actor_id', 'created_at'):
        op.drop_index(op.f(f'ix_audit_logs_{column}'), table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index(op.f('ix_push_subscriptions_user_profile_id'), table_name='push_subscriptions')
    op.drop_table('push_subscriptions')

    op.drop_index(
        op.f('ix_notification_frequency_tracking_window_start'),
        table_name='notification_frequency_tracking',
    )
    op.drop_table('notification_frequency_tracking')

    op.drop_index('uq_active_unsubscribe', table_name='notification_unsubscribes')
    op.drop_index(op.f('ix_notification_unsubscribes_preference_id'), table_name='notification_unsubscribes')
    op.drop_table('notification_unsubscribes')

    op.drop_index(
        op.f('ix_notification_channel_preferences_preference_id'),
        table_name='notification_channel_preferences',
    )
    op.drop_table('notification_channel_preferences')

    op.drop_table('notification_preferences')
