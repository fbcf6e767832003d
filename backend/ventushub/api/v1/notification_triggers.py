"""Operator endpoints for notification triggers."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, require_operator
from ventushub.db.session import get_db
from ventushub.schemas.enums import EventType
from ventushub.schemas.templates import TriggerCreate, TriggerResponse, TriggerUpdate
from ventushub.services.catalog import TriggerCatalog

router = APIRouter()


@router.get("", response_model=list[TriggerResponse])
async def list_triggers(
    event_type: EventType | None = None,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    """Triggers in firing order: highest priority first, then by key."""
    triggers = await TriggerCatalog(db).list(
        event_type=event_type.value if event_type else None, active_only=active_only
    )
    return [TriggerResponse.from_model(t) for t in triggers]


@router.post("", response_model=TriggerResponse, status_code=201)
async def create_trigger(
    req: TriggerCreate,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    trigger = await TriggerCatalog(db).create(req.model_dump(mode="json"))
    return TriggerResponse.from_model(trigger)


@router.get("/{trigger_key}", response_model=TriggerResponse)
async def get_trigger(
    trigger_key: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    return TriggerResponse.from_model(await TriggerCatalog(db).get(trigger_key))


@router.patch("/{trigger_key}", response_model=TriggerResponse)
async def update_trigger(
    trigger_key: str,
    req: TriggerUpdate,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    trigger = await TriggerCatalog(db).update(trigger_key, req.model_dump(exclude_unset=True, mode="json"))
    return TriggerResponse.from_model(trigger)


@router.delete("/{trigger_key}", status_code=204)
async def delete_trigger(
    trigger_key: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(require_operator),
):
    await TriggerCatalog(db).delete(trigger_key)
