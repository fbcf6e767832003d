"""Event ingestion.

`ingest` commits the activity log entry on its own, before any trigger runs,
so a notification failure can never lose a log entry. `process` evaluates
triggers for a stored entry and then annotates it with the outcome as a
best-effort second write.
"""

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ventushub.config import Settings, get_settings
from ventushub.core.errors import NotFoundError, ValidationError
from ventushub.core.metrics import EVENTS_INGESTED
from ventushub.core.timeutil import utcnow
from ventushub.models.activity import ActivityLogEntry
from ventushub.schemas.enums import EntityType, EventType
from ventushub.schemas.events import EventIn
from ventushub.services.audience import UserDirectory
from ventushub.services.triggers import TriggerEvaluator

logger = logging.getLogger(__name__)


class EventIngestor:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings | None = None,
        directory: UserDirectory | None = None,
        clock=utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock
        self.evaluator = TriggerEvaluator(session_factory, self.settings, directory, clock=clock)

    async def ingest(self, event: EventIn) -> ActivityLogEntry:
        if not event.user_id:
            raise ValidationError("Event has no userId")

        now = self.clock()
        # JSON-safe snapshots (datetimes become ISO strings)
        data = event.model_dump(mode="json")
        entry = ActivityLogEntry(
            user_id=event.user_id,
            session_id=event.session_id,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            context=data["context"] or {},
            changes=data["changes"],
            previous_state=data["previous_state"],
            new_state=data["new_state"],
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            device_type=event.device_type,
            processing_time_ms=event.processing_time_ms,
            success=event.success,
            error_message=event.error_message,
            triggered_notifications=False,
            notification_count=0,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

        EVENTS_INGESTED.labels(entity_type=event.entity_type).inc()
        logger.info(f"Event {entry.id} logged: {event.action} {event.entity_type}:{event.entity_id} by {event.user_id}")
        return entry

    async def process(self, activity_id) -> int:
        """Evaluate triggers for a logged event. Returns the number of notifications created."""
        async with self.session_factory() as session:
            entry = await session.get(ActivityLogEntry, activity_id)
            if entry is None:
                raise NotFoundError("ActivityLogEntry", activity_id)

        notifications = await self.evaluator.evaluate(entry)
        count = len(notifications)
        if count:
            await self._annotate(entry.id, count)
        return count

    async def ingest_and_process(self, event: EventIn) -> tuple[ActivityLogEntry, int]:
        """Synchronous path: log, then evaluate. Trigger failures never undo the log entry."""
        entry = await self.ingest(event)
        try:
            count = await self.process(entry.id)
        except Exception as e:
            logger.exception(f"Trigger processing failed for event {entry.id}: {e}")
            count = 0
        return entry, count

    async def _annotate(self, activity_id, count: int) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(ActivityLogEntry)
                    .where(ActivityLogEntry.id == activity_id)
                    .values(
                        triggered_notifications=True,
                        notification_count=ActivityLogEntry.notification_count + count,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.warning(f"Could not annotate event {activity_id} with {count} notification(s): {e}")


# ── Convenience emitters ──
# Build well-formed events for the flows the rest of the application emits most.

def property_stage_advanced(user_id: str, property_id: int, from_stage: int, to_stage: int,
                            property_address: str, stage_name: str, **context) -> EventIn:
    return EventIn(
        user_id=user_id,
        action=EventType.STAGE_ADVANCED,
        entity_type=EntityType.PROPERTY,
        entity_id=property_id,
        context={"propertyAddress": property_address, "newStageName": stage_name, **context},
        previous_state={"stage": from_stage},
        new_state={"stage": to_stage},
        changes={"stage": to_stage},
    )


def pendency_created(user_id: str, property_id: int, property_address: str, pendency_title: str,
                     stage: int | None = None, **context) -> EventIn:
    return EventIn(
        user_id=user_id,
        action=EventType.PENDENCY_CREATED,
        entity_type=EntityType.PROPERTY,
        entity_id=property_id,
        context={"propertyAddress": property_address, "pendencyTitle": pendency_title, "stage": stage, **context},
    )


def client_note_reminder(user_id: str, client_id: int, client_name: str, note_title: str,
                         reminder_date, **context) -> EventIn:
    if hasattr(reminder_date, "strftime"):
        reminder_date = reminder_date.strftime("%d/%m/%Y %H:%M")
    return EventIn(
        user_id=user_id,
        action=EventType.CLIENT_REMINDER_DUE,
        entity_type=EntityType.CLIENT,
        entity_id=client_id,
        context={"clientName": client_name, "noteTitle": note_title, "reminderDate": reminder_date, **context},
    )


def document_uploaded(user_id: str, property_id: int, property_address: str, document_name: str,
                      **context) -> EventIn:
    return EventIn(
        user_id=user_id,
        action=EventType.DOCUMENT_UPLOADED,
        entity_type=EntityType.PROPERTY,
        entity_id=property_id,
        context={"propertyAddress": property_address, "documentName": document_name, **context},
    )


def contract_signed(user_id: str, contract_id: int, property_address: str, buyer_name: str,
                    **context) -> EventIn:
    return EventIn(
        user_id=user_id,
        action=EventType.CONTRACT_SIGNED,
        entity_type=EntityType.CONTRACT,
        entity_id=contract_id,
        context={"propertyAddress": property_address, "buyerName": buyer_name, **context},
    )
