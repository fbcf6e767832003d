from fastapi import APIRouter
from ventushub.api.v1 import (
    delivery,
    events,
    notification_groups,
    notification_metrics,
    notification_preferences,
    notification_templates,
    notification_triggers,
    notifications,
    push_subscriptions,
)

api_router = APIRouter()

api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(notification_preferences.router, prefix="/notification-preferences", tags=["preferences"])
api_router.include_router(notification_groups.router, prefix="/notification-groups", tags=["groups"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(notification_templates.router, prefix="/notification-templates", tags=["templates"])
api_router.include_router(notification_triggers.router, prefix="/notification-triggers", tags=["triggers"])
api_router.include_router(delivery.router, prefix="/delivery", tags=["delivery"])
api_router.include_router(notification_metrics.router, prefix="/notification-metrics", tags=["metrics"])
api_router.include_router(push_subscriptions.router, prefix="/push", tags=["push"])
