from ventushub.models.base import Base
from ventushub.models.notification import Notification, NotificationGroup
from ventushub.models.template import NotificationTemplate, NotificationTrigger
from ventushub.models.preferences import NotificationPreferences, PushSubscription
from ventushub.models.delivery import DeliveryLogEntry, QueueJob
from ventushub.models.activity import ActivityLogEntry
from ventushub.models.metrics import MetricsPartition

__all__ = [
    "Base", "Notification", "NotificationGroup", "NotificationTemplate",
    "NotificationTrigger", "NotificationPreferences", "DeliveryLogEntry",
    "QueueJob", "ActivityLogEntry", "MetricsPartition", "PushSubscription",
]
