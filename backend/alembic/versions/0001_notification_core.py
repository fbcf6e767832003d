"""notification core tables

Revision ID: 0001_notification_core
Revises:
Create Date: 2026-10-05 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers, used by Alembic.
revision = "0001_notification_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("subcategory", sa.String(50)),
        sa.Column("source_system", sa.String(50), nullable=False, server_default="ventushub"),
        sa.Column("related_entity", sa.String(50)),
        sa.Column("related_id", sa.Integer()),
        sa.Column(
            "parent_notification_id", UUID(as_uuid=True),
            sa.ForeignKey("notifications.id", ondelete="SET NULL"),
        ),
        sa.Column("action_url", sa.String(500)),
        sa.Column("action_data", JSONB),
        sa.Column("delivery_channels", JSONB, server_default='["in_app"]'),
        sa.Column("delivery_status", JSONB, server_default="{}"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime()),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pinned_at", sa.DateTime()),
        sa.Column("scheduled_for", sa.DateTime()),
        sa.Column("expires_at", sa.DateTime()),
        sa.Column("rich_content", JSONB),
        sa.Column("metadata", JSONB, server_default="{}"),
        sa.Column("trigger_key", sa.String(100)),
        sa.Column("dedup_key", sa.String(255), unique=True),
        sa.Column("group_key", sa.String(150)),
        *_timestamps(),
        sa.CheckConstraint("type IN ('info', 'success', 'warning', 'error', 'reminder')", name="ck_notifications_type"),
        sa.CheckConstraint("severity IN ('low', 'normal', 'high', 'critical')", name="ck_notifications_severity"),
        sa.CheckConstraint("NOT is_read OR read_at IS NOT NULL", name="ck_notifications_read_at"),
        sa.CheckConstraint("NOT is_archived OR archived_at IS NOT NULL", name="ck_notifications_archived_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_user_unread", "notifications", ["user_id", "is_read", "created_at"])
    op.create_index("ix_notifications_category", "notifications", ["category", "created_at"])
    op.create_index("ix_notifications_related", "notifications", ["related_entity", "related_id"])
    op.create_index("ix_notifications_trigger_window", "notifications", ["trigger_key", "user_id", "created_at"])
    op.create_index("ix_notifications_scheduled_for", "notifications", ["scheduled_for"])
    op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])
    op.create_index("ix_notifications_group_key", "notifications", ["group_key"])

    op.create_table(
        "notification_groups",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("group_key", sa.String(150), nullable=False),
        sa.Column("group_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("total_notifications", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unread_notifications", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_collapsed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", JSONB, server_default="{}"),
        sa.Column("related_entity", sa.String(50)),
        sa.Column("related_id", sa.Integer()),
        sa.Column("last_activity_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "group_key", name="uq_notification_groups_user_key"),
    )
    op.create_index("ix_notification_groups_user_id", "notification_groups", ["user_id"])
    op.create_index("ix_notification_groups_group_type", "notification_groups", ["group_type"])
    op.create_index("ix_notification_groups_last_activity_at", "notification_groups", ["last_activity_at"])

    op.create_table(
        "notification_templates",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("template_key", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("title_template", sa.Text(), nullable=False),
        sa.Column("message_template", sa.Text(), nullable=False),
        sa.Column("default_type", sa.String(20), nullable=False, server_default="info"),
        sa.Column("default_severity", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("default_category", sa.String(50), nullable=False),
        sa.Column("default_channels", JSONB, server_default='["in_app"]'),
        sa.Column("rich_content_template", JSONB),
        sa.Column("conditions", JSONB),
        sa.Column("locale", sa.String(10), server_default="pt-BR"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_notification_templates_default_category", "notification_templates", ["default_category"])
    op.create_index("ix_notification_templates_is_active", "notification_templates", ["is_active"])

    op.create_table(
        "notification_triggers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("trigger_key", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("conditions", JSONB),
        sa.Column(
            "template_id", UUID(as_uuid=True),
            sa.ForeignKey("notification_templates.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("override_settings", JSONB),
        sa.Column("delay_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("frequency_limit", JSONB),
        sa.Column("target_roles", JSONB),
        sa.Column("target_conditions", JSONB),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_notification_triggers_event_type", "notification_triggers", ["event_type"])
    op.create_index("ix_notification_triggers_entity_type", "notification_triggers", ["entity_type"])
    op.create_index("ix_notification_triggers_is_active", "notification_triggers", ["is_active"])
    op.create_index("ix_notification_triggers_priority", "notification_triggers", ["priority"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column("global_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("quiet_hours_start", sa.String(5)),
        sa.Column("quiet_hours_end", sa.String(5)),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="America/Sao_Paulo"),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("category_preferences", JSONB, server_default="{}"),
        sa.Column("digest_frequency", sa.String(20), nullable=False, server_default="instant"),
        sa.Column("max_notifications_per_day", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("grouping_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_archive_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("sound_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("vibration_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("smart_delivery_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority_filtering", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("duplicate_detection", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_address", sa.String(255)),
        sa.Column("phone_number", sa.String(32)),
        sa.Column("push_token", sa.String(512)),
        *_timestamps(),
        sa.CheckConstraint(
            "digest_frequency IN ('instant', 'hourly', 'daily', 'weekly')",
            name="ck_notification_preferences_digest",
        ),
    )

    op.create_table(
        "notification_delivery_log",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "notification_id", UUID(as_uuid=True),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("provider", sa.String(50)),
        sa.Column("external_id", sa.String(255)),
        sa.Column("payload", JSONB),
        sa.Column("error_message", sa.Text()),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_at", sa.DateTime()),
        sa.Column("sent_at", sa.DateTime()),
        sa.Column("delivered_at", sa.DateTime()),
        sa.Column("opened_at", sa.DateTime()),
        sa.Column("clicked_at", sa.DateTime()),
        sa.Column("interaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("channel IN ('in_app', 'email', 'push', 'sms')", name="ck_delivery_log_channel"),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'delivered', 'failed', 'bounced', 'opened', 'clicked')",
            name="ck_delivery_log_status",
        ),
    )
    op.create_index("ix_notification_delivery_log_notification_id", "notification_delivery_log", ["notification_id"])
    op.create_index("ix_notification_delivery_log_user_id", "notification_delivery_log", ["user_id"])
    op.create_index("ix_notification_delivery_log_channel", "notification_delivery_log", ["channel"])
    op.create_index("ix_notification_delivery_log_status", "notification_delivery_log", ["status"])
    op.create_index("ix_notification_delivery_log_created_at", "notification_delivery_log", ["created_at"])
    op.create_index("ix_delivery_log_provider_external", "notification_delivery_log", ["provider", "external_id"])

    op.create_table(
        "notification_queue",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("data", JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "notification_id", UUID(as_uuid=True),
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
        ),
        sa.Column("user_id", sa.String(64)),
        sa.Column("channel", sa.String(20)),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text()),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("scheduled_for", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("processed_at", sa.DateTime()),
        sa.Column("completed_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_notification_queue_status",
        ),
        sa.CheckConstraint(
            "job_type IN ('send_notification', 'process_digest', 'cleanup_expired')",
            name="ck_notification_queue_job_type",
        ),
        sa.CheckConstraint("attempts <= max_attempts", name="ck_notification_queue_attempts"),
    )
    op.create_index("ix_notification_queue_job_type", "notification_queue", ["job_type"])
    op.create_index("ix_notification_queue_notification_id", "notification_queue", ["notification_id"])
    op.create_index("ix_notification_queue_poll", "notification_queue", ["status", "priority", "scheduled_for"])
    op.create_index("ix_notification_queue_user_day", "notification_queue", ["user_id", "created_at"])

    op.create_table(
        "user_activity_log",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(128)),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("context", JSONB, server_default="{}"),
        sa.Column("changes", JSONB),
        sa.Column("previous_state", JSONB),
        sa.Column("new_state", JSONB),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("device_type", sa.String(50)),
        sa.Column("processing_time_ms", sa.Integer()),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("error_message", sa.Text()),
        sa.Column("triggered_notifications", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notification_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "device_type IS NULL OR device_type IN ('desktop', 'mobile', 'tablet', 'unknown')",
            name="ck_activity_log_device_type",
        ),
    )
    op.create_index("ix_user_activity_log_session_id", "user_activity_log", ["session_id"])
    op.create_index("ix_activity_log_user", "user_activity_log", ["user_id", "created_at"])
    op.create_index("ix_activity_log_action", "user_activity_log", ["action", "created_at"])
    op.create_index("ix_activity_log_entity", "user_activity_log", ["entity_type", "entity_id"])

    op.create_table(
        "notification_metrics",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("date_partition", sa.Date(), nullable=False, unique=True),
        sa.Column("total_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_delivered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_opened", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_clicked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_bounced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("category_metrics", JSONB, server_default="{}"),
        sa.Column("channel_metrics", JSONB, server_default="{}"),
        sa.Column("active_users", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_time_to_read_seconds", sa.Float()),
        sa.Column("avg_delivery_time_seconds", sa.Float()),
        sa.Column("bounce_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("click_through_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("notification_metrics")
    op.drop_index("ix_activity_log_entity", table_name="user_activity_log")
    op.drop_index("ix_activity_log_action", table_name="user_activity_log")
    op.drop_index("ix_activity_log_user", table_name="user_activity_log")
    op.drop_index("ix_user_activity_log_session_id", table_name="user_activity_log")
    op.drop_table("user_activity_log")
    op.drop_table("notification_queue")
    op.drop_table("notification_delivery_log")
    op.drop_table("notification_preferences")
    op.drop_table("notification_triggers")
    op.drop_table("notification_templates")
    op.drop_table("notification_groups")
    op.drop_table("notifications")
