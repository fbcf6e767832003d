"""Grouped views of the notification feed."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user
from ventushub.db.session import get_db
from ventushub.schemas.notification import GroupResponse, NotificationResponse
from ventushub.services.notification_store import NotificationStore

router = APIRouter()


@router.get("", response_model=list[GroupResponse])
async def list_groups(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Groups by most recent activity."""
    return [GroupResponse.from_model(g) for g in await NotificationStore(db).list_groups(user.id, limit=limit)]


@router.get("/{group_id}/notifications", response_model=list[NotificationResponse])
async def group_notifications(
    group_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    items = await NotificationStore(db).group_notifications(user.id, group_id, limit=limit)
    return [NotificationResponse.from_model(n) for n in items]


@router.post("/{group_id}/collapse", response_model=GroupResponse)
async def collapse_group(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return GroupResponse.from_model(await NotificationStore(db).set_group_collapsed(user.id, group_id, True))


@router.post("/{group_id}/expand", response_model=GroupResponse)
async def expand_group(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return GroupResponse.from_model(await NotificationStore(db).set_group_collapsed(user.id, group_id, False))


@router.post("/{group_id}/read", response_model=GroupResponse)
async def mark_group_read(
    group_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return GroupResponse.from_model(await NotificationStore(db).mark_group_read(user.id, group_id))
