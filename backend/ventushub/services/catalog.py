"""Operator management of templates and triggers."""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.errors import ConflictError, NotFoundError
from ventushub.core.timeutil import utcnow
from ventushub.models.template import NotificationTemplate, NotificationTrigger
from ventushub.services.templating import render, render_structure

logger = logging.getLogger(__name__)

# Edits to these fields change what users receive, so they bump the version
VERSIONED_FIELDS = ("title_template", "message_template", "rich_content_template")


class TemplateCatalog:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock

    async def list(self, active_only: bool = False) -> list[NotificationTemplate]:
        query = select(NotificationTemplate).order_by(NotificationTemplate.template_key)
        if active_only:
            query = query.where(NotificationTemplate.is_active == True)
        return list((await self.session.execute(query)).scalars().all())

    async def get(self, template_key: str) -> NotificationTemplate:
        result = await self.session.execute(
            select(NotificationTemplate).where(NotificationTemplate.template_key == template_key)
        )
        template = result.scalar_one_or_none()
        if template is None:
            raise NotFoundError("NotificationTemplate", template_key)
        return template

    async def create(self, values: dict) -> NotificationTemplate:
        now = self.clock()
        template = NotificationTemplate(**values, version=1, created_at=now, updated_at=now)
        self.session.add(template)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Template '{values.get('template_key')}' already exists") from e
        logger.info(f"Template '{template.template_key}' created")
        return template

    async def update(self, template_key: str, changes: dict) -> NotificationTemplate:
        template = await self.get(template_key)
        bump = any(
            field in changes and changes[field] != getattr(template, field)
            for field in VERSIONED_FIELDS
        )
        for attr, value in changes.items():
            setattr(template, attr, value)
        if bump:
            template.version += 1
        template.updated_at = self.clock()
        await self.session.flush()
        logger.info(f"Template '{template_key}' updated (version {template.version})")
        return template

    async def deactivate(self, template_key: str) -> NotificationTemplate:
        return await self.update(template_key, {"is_active": False})

    async def delete(self, template_key: str) -> None:
        """Delete an unreferenced template. Referenced templates can only be deactivated."""
        template = await self.get(template_key)
        references = (await self.session.execute(
            select(func.count()).select_from(NotificationTrigger)
            .where(NotificationTrigger.template_id == template.id)
        )).scalar_one()
        if references:
            raise ConflictError(
                f"Template '{template_key}' is used by {references} trigger(s); deactivate it instead"
            )
        await self.session.delete(template)
        await self.session.flush()

    async def preview(self, template_key: str, context: dict) -> dict:
        """Render a template against a sample context. Raises TemplateRenderError."""
        template = await self.get(template_key)
        return {
            "title": render(template.title_template, context),
            "message": render(template.message_template, context),
            "rich_content": render_structure(template.rich_content_template, context)
            if template.rich_content_template else None,
        }


class TriggerCatalog:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock
        self.templates = TemplateCatalog(session, clock=clock)

    async def list(self, event_type: str | None = None, active_only: bool = False) -> list[NotificationTrigger]:
        query = select(NotificationTrigger).order_by(
            NotificationTrigger.priority.desc(), NotificationTrigger.trigger_key
        )
        if event_type:
            query = query.where(NotificationTrigger.event_type == event_type)
        if active_only:
            query = query.where(NotificationTrigger.is_active == True)
        return list((await self.session.execute(query)).unique().scalars().all())

    async def get(self, trigger_key: str) -> NotificationTrigger:
        result = await self.session.execute(
            select(NotificationTrigger).where(NotificationTrigger.trigger_key == trigger_key)
        )
        trigger = result.unique().scalar_one_or_none()
        if trigger is None:
            raise NotFoundError("NotificationTrigger", trigger_key)
        return trigger

    async def create(self, values: dict) -> NotificationTrigger:
        values = dict(values)
        template = await self.templates.get(values.pop("template_key"))
        now = self.clock()
        trigger = NotificationTrigger(**values, template_id=template.id, created_at=now, updated_at=now)
        self.session.add(trigger)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Trigger '{values.get('trigger_key')}' already exists") from e
        await self.session.refresh(trigger, ["template"])
        logger.info(f"Trigger '{trigger.trigger_key}' created for {trigger.event_type} → {template.template_key}")
        return trigger

    async def update(self, trigger_key: str, changes: dict) -> NotificationTrigger:
        trigger = await self.get(trigger_key)
        changes = dict(changes)
        if "template_key" in changes:
            template = await self.templates.get(changes.pop("template_key"))
            trigger.template_id = template.id
        for attr, value in changes.items():
            setattr(trigger, attr, value)
        trigger.updated_at = self.clock()
        await self.session.flush()
        await self.session.refresh(trigger, ["template"])
        return trigger

    async def delete(self, trigger_key: str) -> None:
        trigger = await self.get(trigger_key)
        await self.session.delete(trigger)
        await self.session.flush()
        logger.info(f"Trigger '{trigger_key}' deleted")
