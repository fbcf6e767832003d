"""Per-user notification preferences."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user
from ventushub.config import get_settings
from ventushub.db.session import get_db
from ventushub.schemas.preferences import PreferencesResponse, PreferencesUpdate
from ventushub.services.preferences import PreferencesGate

router = APIRouter()


@router.get("", response_model=PreferencesResponse)
async def get_preferences(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """The caller's preferences, or the defaults when none were saved yet."""
    prefs = await PreferencesGate(db, get_settings()).get(user.id)
    return PreferencesResponse.from_model(prefs)


@router.put("", response_model=PreferencesResponse)
async def update_preferences(
    req: PreferencesUpdate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Create or update preferences. Only the fields present in the body change."""
    changes = req.model_dump(exclude_unset=True, mode="json")
    prefs = await PreferencesGate(db, get_settings()).upsert(user.id, changes)
    return PreferencesResponse.from_model(prefs)
