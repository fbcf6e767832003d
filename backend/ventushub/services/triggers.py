"""Trigger evaluation: from one logged event to zero or more notifications.

Matching triggers run in descending priority, ties broken by trigger key.
Each trigger runs in its own session and transaction, so a broken template or
a database error on one trigger never affects the others.
"""

import logging
from dataclasses import replace
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ventushub.config import Settings, get_settings
from ventushub.core.errors import ConflictError, TemplateRenderError
from ventushub.core.metrics import TRIGGERS_EVALUATED
from ventushub.core.timeutil import utcnow
from ventushub.models.notification import Notification
from ventushub.models.template import NotificationTemplate, NotificationTrigger
from ventushub.schemas.templates import FrequencyLimit, TriggerOverrides
from ventushub.services.audience import NullUserDirectory, UserDirectory, resolve_recipients
from ventushub.services.conditions import event_payload, matches
from ventushub.services.metrics_aggregator import record_delivery_event
from ventushub.services.notification_service import NotificationDraft, NotificationService
from ventushub.services.notification_store import NotificationStore
from ventushub.services.templating import build_context, render, render_structure

logger = logging.getLogger(__name__)


def trigger_order(trigger) -> tuple:
    return (-trigger.priority, trigger.trigger_key)


def dedup_key(trigger_key: str, user_id: str, entity_id, limit: FrequencyLimit, slot: int) -> str:
    """Unique key for one of the `max_count` slots a trigger has per user (and entity).

    A slot is taken while the notification holding it is inside the window.
    Two concurrent firings that pick the same free slot compete on the unique
    constraint, and only one of them gets through.
    """
    scope = entity_id if limit.scope == "entity" else "*"
    return f"{trigger_key}:{user_id}:{scope}:{slot}"


def render_template(template: NotificationTemplate, context: dict) -> dict:
    """Render a template's title, message and rich content. Raises TemplateRenderError."""
    return {
        "title": render(template.title_template, context),
        "message": render(template.message_template, context),
        "rich_content": render_structure(template.rich_content_template, context)
        if template.rich_content_template else None,
    }


class TriggerEvaluator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings | None = None,
        directory: UserDirectory | None = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.directory = directory or NullUserDirectory()
        self.clock = clock

    async def matching_triggers(self, action: str, entity_type: str) -> list[NotificationTrigger]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationTrigger).where(
                    NotificationTrigger.is_active == True,
                    NotificationTrigger.event_type == action,
                    NotificationTrigger.entity_type == entity_type,
                )
            )
            triggers = list(result.unique().scalars().all())
        return sorted(triggers, key=trigger_order)

    async def evaluate(self, event) -> list[Notification]:
        """Run every matching trigger for `event` (an ActivityLogEntry or EventIn).

        Returns the notifications created, in creation order.
        """
        created: list[Notification] = []
        for trigger in await self.matching_triggers(event.action, event.entity_type):
            try:
                async with self.session_factory() as session:
                    notifications = await self.fire(session, trigger, event)
                    await session.commit()
                created.extend(notifications)
                for notification in notifications:
                    await record_delivery_event(
                        self.session_factory, "in_app", notification.category, "delivered", at=self.clock()
                    )
            except TemplateRenderError as e:
                TRIGGERS_EVALUATED.labels(outcome="error").inc()
                logger.error(f"Trigger '{trigger.trigger_key}' skipped: template render failed: {e}")
            except Exception as e:
                TRIGGERS_EVALUATED.labels(outcome="error").inc()
                logger.exception(f"Trigger '{trigger.trigger_key}' failed for event {getattr(event, 'id', None)}: {e}")
        return created

    async def fire(self, session, trigger: NotificationTrigger, event) -> list[Notification]:
        template = trigger.template
        if not template.is_active:
            TRIGGERS_EVALUATED.labels(outcome="suppressed").inc()
            logger.info(f"Trigger '{trigger.trigger_key}' skipped: template '{template.template_key}' inactive")
            return []

        payload = event_payload(event)
        if not matches(trigger.conditions, payload) or not matches(template.conditions, payload):
            TRIGGERS_EVALUATED.labels(outcome="no_match").inc()
            return []

        context = build_context(event)
        rendered = render_template(template, context)
        overrides = TriggerOverrides.model_validate(trigger.override_settings or {})
        action_url = render(overrides.action_url, context) if overrides.action_url else None

        recipients = await resolve_recipients(trigger, payload, self.directory)
        if not recipients:
            logger.info(f"Trigger '{trigger.trigger_key}' matched but has no recipients")
            return []

        now = self.clock()
        limit = FrequencyLimit.model_validate(trigger.frequency_limit) if trigger.frequency_limit else None
        store = NotificationStore(session, clock=self.clock)
        service = NotificationService(session, self.settings, clock=self.clock)

        created = []
        for user_id in recipients:
            keys = [None]
            if limit is not None:
                since = now - timedelta(hours=limit.window_hours)
                count = await store.count_trigger_window(
                    trigger.trigger_key, user_id,
                    since=since,
                    related_id=event.entity_id,
                    per_entity=limit.scope == "entity",
                )
                if count < limit.max_count:
                    keys = await store.free_window_slots(
                        [dedup_key(trigger.trigger_key, user_id, event.entity_id, limit, slot)
                         for slot in range(limit.max_count)],
                        since,
                    )
                if count >= limit.max_count or not keys:
                    TRIGGERS_EVALUATED.labels(outcome="rate_limited").inc()
                    logger.info(
                        f"Trigger '{trigger.trigger_key}' rate limited for user {user_id} "
                        f"({count}/{limit.max_count} in {limit.window_hours}h)"
                    )
                    continue

            draft = NotificationDraft(
                user_id=user_id,
                title=rendered["title"],
                message=rendered["message"],
                rich_content=rendered["rich_content"],
                type=overrides.type or template.default_type,
                severity=overrides.severity or template.default_severity,
                category=overrides.category or template.default_category,
                subcategory=overrides.subcategory,
                related_entity=event.entity_type,
                related_id=event.entity_id,
                action_url=action_url,
                channels=list(overrides.channels or template.default_channels or ["in_app"]),
                scheduled_for=now + timedelta(minutes=trigger.delay_minutes) if trigger.delay_minutes else None,
                expires_at=now + timedelta(hours=overrides.expires_in_hours) if overrides.expires_in_hours else None,
                metadata={
                    "trigger": trigger.trigger_key,
                    "template": template.template_key,
                    "templateVersion": template.version,
                    "eventId": str(event.id) if getattr(event, "id", None) else None,
                },
                trigger_key=trigger.trigger_key,
            )
            for key in keys:
                try:
                    notification = await service.create(replace(draft, dedup_key=key))
                    break
                except ConflictError:
                    logger.info(f"Trigger '{trigger.trigger_key}' slot {key} taken by a concurrent firing")
            else:
                TRIGGERS_EVALUATED.labels(outcome="rate_limited").inc()
                logger.info(f"Trigger '{trigger.trigger_key}' lost a frequency-limit race for user {user_id}")
                continue
            if notification is None:
                TRIGGERS_EVALUATED.labels(outcome="suppressed").inc()
                continue
            TRIGGERS_EVALUATED.labels(outcome="fired").inc()
            created.append(notification)
        return created
