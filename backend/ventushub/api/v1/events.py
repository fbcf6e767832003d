"""Activity event intake.

The entry is logged before this returns. Trigger evaluation is handed to
Celery, so a slow or failing trigger never holds up the caller.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user, get_session_factory, get_user_directory
from ventushub.config import get_settings
from ventushub.db.session import get_db
from ventushub.models.activity import ActivityLogEntry
from ventushub.schemas.events import ActivityResponse, EventAccepted, EventIn
from ventushub.services.events import EventIngestor

logger = logging.getLogger(__name__)

router = APIRouter()


async def _process_in_background(ingestor: EventIngestor, activity_id) -> None:
    try:
        await ingestor.process(activity_id)
    except Exception as e:
        logger.exception(f"Background trigger processing failed for event {activity_id}: {e}")


@router.post("", response_model=EventAccepted, status_code=202)
async def ingest_event(
    event: EventIn,
    background_tasks: BackgroundTasks,
    sync: bool = Query(default=False, description="Evaluate triggers before responding"),
    user: CurrentUser = Depends(get_current_user),
    session_factory=Depends(get_session_factory),
    directory=Depends(get_user_directory),
):
    """Log an event and schedule trigger evaluation."""
    if event.user_id and event.user_id != user.id and not user.is_operator:
        raise HTTPException(status_code=403, detail="Cannot log events on behalf of another user")
    event = event.model_copy(update={"user_id": event.user_id or user.id})

    ingestor = EventIngestor(session_factory, get_settings(), directory)
    entry = await ingestor.ingest(event)

    if sync:
        try:
            count = await ingestor.process(entry.id)
        except Exception as e:
            logger.exception(f"Trigger processing failed for event {entry.id}: {e}")
            count = 0
        return EventAccepted(id=str(entry.id), status="processed", notification_count=count)

    try:
        from ventushub.tasks.notification_tasks import process_event
        process_event.delay(str(entry.id))
    except Exception as e:
        logger.warning(f"Celery dispatch failed for event {entry.id}, processing in-process: {e}")
        background_tasks.add_task(_process_in_background, ingestor, entry.id)
    return EventAccepted(id=str(entry.id), status="queued")


@router.get("", response_model=list[ActivityResponse])
async def list_events(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """The caller's most recent activity."""
    result = await db.execute(
        select(ActivityLogEntry)
        .where(ActivityLogEntry.user_id == user.id)
        .order_by(ActivityLogEntry.created_at.desc())
        .limit(limit)
    )
    return [ActivityResponse.from_model(e) for e in result.scalars().all()]
