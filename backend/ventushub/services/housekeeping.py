import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.timeutil import utcnow
from ventushub.models.notification import Notification
from ventushub.models.preferences import NotificationPreferences
from ventushub.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)

DEFAULT_AUTO_ARCHIVE_DAYS = 30


async def cleanup_expired(session: AsyncSession, clock=utcnow) -> int:
    """Delete notifications past their expiry. Their delivery rows and jobs cascade."""
    removed = await NotificationStore(session, clock=clock).delete_expired()
    if removed:
        logger.info(f"Removed {removed} expired notification(s)")
    return removed


async def auto_archive(session: AsyncSession, clock=utcnow) -> int:
    """Archive read, unpinned notifications older than each user's auto-archive window."""
    now = clock()
    store = NotificationStore(session, clock=clock)

    users = (await session.execute(
        select(Notification.user_id)
        .where(Notification.is_read == True, Notification.is_archived == False)
        .distinct()
    )).scalars().all()
    if not users:
        return 0

    windows = dict((await session.execute(
        select(NotificationPreferences.user_id, NotificationPreferences.auto_archive_days)
        .where(NotificationPreferences.user_id.in_(users))
    )).all())

    archived = 0
    for user_id in users:
        days = windows.get(user_id)
        if days is None:
            days = DEFAULT_AUTO_ARCHIVE_DAYS
        archived += await store.archive_read_before(user_id, now - timedelta(days=days))
    if archived:
        logger.info(f"Auto-archived {archived} read notification(s) across {len(users)} user(s)")
    return archived
