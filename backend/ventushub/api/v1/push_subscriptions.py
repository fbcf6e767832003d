"""Push device subscriptions and per-user channel tests."""

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.api.v1.deps import CurrentUser, get_current_user, get_registry
from ventushub.config import get_settings
from ventushub.core.errors import ValidationError
from ventushub.db.session import get_db
from ventushub.integrations.channels.factory import CheckMessage
from ventushub.schemas.preferences import (
    ChannelTestRequest,
    PushSubscriptionCreate,
    PushSubscriptionResponse,
    PushUnsubscribe,
)
from ventushub.services.preferences import PreferencesGate
from ventushub.services.push_subscriptions import PushSubscriptionService

router = APIRouter()


@router.post("/subscribe", response_model=PushSubscriptionResponse, status_code=201)
async def subscribe(
    req: PushSubscriptionCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    user_agent: str | None = Header(default=None),
):
    """Register (or refresh) a device. Also switches the push channel on."""
    subscription = await PushSubscriptionService(db).subscribe(
        user.id,
        req.endpoint,
        p256dh=req.keys.p256dh if req.keys else None,
        auth=req.keys.auth if req.keys else None,
        expiration_time=req.expires_at(),
        user_agent=user_agent[:512] if user_agent else None,
    )
    return PushSubscriptionResponse.from_model(subscription)


@router.delete("/unsubscribe", response_model=PushSubscriptionResponse)
async def unsubscribe(
    req: PushUnsubscribe,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    subscription = await PushSubscriptionService(db).unsubscribe(user.id, req.endpoint)
    return PushSubscriptionResponse.from_model(subscription)


@router.get("/subscriptions", response_model=list[PushSubscriptionResponse])
async def list_subscriptions(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return [PushSubscriptionResponse.from_model(s) for s in await PushSubscriptionService(db).list_for_user(user.id)]


@router.post("/test")
async def send_test(
    req: ChannelTestRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    registry=Depends(get_registry),
):
    """Send a test message to the caller's own address or devices on one channel."""
    target = await PreferencesGate(db, get_settings()).target(user.id)
    devices = []
    if req.type == "push":
        devices = target.all_push_devices()
        if not devices:
            raise ValidationError("No active push subscriptions; enable push notifications first")
    elif req.type == "email" and not target.email:
        raise ValidationError("No email address on file")
    elif req.type == "sms" and not target.phone:
        raise ValidationError("No phone number on file")

    message = CheckMessage(message=req.message) if req.message else CheckMessage()
    outcome = await registry.check(req.type, target, message)
    if req.type == "push" and outcome["success"]:
        await PushSubscriptionService(db).mark_used(user.id, [d.endpoint for d in target.push_devices])
    return {
        "success": outcome["success"],
        "channel": req.type,
        "externalId": outcome["external_id"],
        "error": outcome["error"],
        "devicesNotified": len(devices) if req.type == "push" and outcome["success"] else 0,
    }


@router.get("/vapid-key")
async def vapid_key(_: CurrentUser = Depends(get_current_user)):
    """Public key browsers need to create a Web Push subscription. Null when not configured."""
    return {"publicKey": get_settings().vapid_public_key or None}
