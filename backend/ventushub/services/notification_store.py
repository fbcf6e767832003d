"""Notification store: CRUD, feed queries and per-user group roll-ups.

Every mutation is scoped by the owning user id. Marking read, archiving and
pinning are idempotent. Expired and not-yet-due scheduled notifications stay
in the table but are hidden from active queries.
"""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.errors import ConflictError, NotFoundError
from ventushub.core.timeutil import utcnow
from ventushub.db.upsert import ensure_row, insert_or_skip
from ventushub.models.notification import Notification, NotificationGroup

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(minutes=10)


def group_key_for(related_entity: str | None, related_id: int | None, category: str) -> str | None:
    if not related_entity or related_id is None:
        return None
    return f"{related_entity}:{related_id}:{category}"


class NotificationStore:
    def __init__(self, session: AsyncSession, clock=utcnow):
        self.session = session
        self.clock = clock

    # ── Create ──

    async def create(self, values: dict) -> Notification:
        """Insert a notification.

        With a `dedup_key`, a concurrent insert of the same key loses the race
        and ConflictError is raised instead of a second row.
        """
        values = {**values}
        values.setdefault("id", uuid.uuid4())
        now = self.clock()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        if values.get("dedup_key"):
            new_id = await insert_or_skip(self.session, Notification, values, ["dedup_key"])
            if new_id is None:
                raise ConflictError(f"Notification with dedup key '{values['dedup_key']}' already exists")
            return await self.session.get(Notification, new_id)

        notification = Notification(**values)
        self.session.add(notification)
        await self.session.flush()
        return notification

    # ── Queries ──

    def _owned(self, user_id: str):
        return select(Notification).where(Notification.user_id == user_id)

    def _active(self, now: datetime):
        return and_(
            Notification.is_archived == False,
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
        )

    async def get(self, user_id: str, notification_id) -> Notification:
        result = await self.session.execute(
            self._owned(user_id).where(Notification.id == notification_id)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        return notification

    async def list_feed(
        self,
        user_id: str,
        category: str | None = None,
        severity: str | None = None,
        is_read: bool | None = None,
        archived: bool = False,
        pinned_first: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Notification], int]:
        now = self.clock()
        conditions = [
            Notification.user_id == user_id,
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
            Notification.is_archived == archived,
        ]
        if category:
            conditions.append(Notification.category == category)
        if severity:
            conditions.append(Notification.severity == severity)
        if is_read is not None:
            conditions.append(Notification.is_read == is_read)

        total = (await self.session.execute(
            select(func.count()).select_from(Notification).where(*conditions)
        )).scalar_one()

        order = [Notification.created_at.desc(), Notification.id]
        if pinned_first:
            order.insert(0, Notification.is_pinned.desc())
        result = await self.session.execute(
            select(Notification).where(*conditions).order_by(*order).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def unread_count(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Notification).where(
                Notification.user_id == user_id,
                Notification.is_read == False,
                self._active(self.clock()),
            )
        )
        return result.scalar_one()

    async def summary(self, user_id: str) -> dict:
        now = self.clock()
        active = self._active(now)
        totals = (await self.session.execute(
            select(
                func.count(),
                func.sum(case((Notification.is_read == False, 1), else_=0)),
                func.sum(case((Notification.is_pinned == True, 1), else_=0)),
            ).where(Notification.user_id == user_id, active)
        )).one()
        archived = (await self.session.execute(
            select(func.count()).select_from(Notification).where(
                Notification.user_id == user_id, Notification.is_archived == True
            )
        )).scalar_one()

        by_category = {}
        for category, count in (await self.session.execute(
            select(Notification.category, func.count())
            .where(Notification.user_id == user_id, active)
            .group_by(Notification.category)
        )).all():
            by_category[category] = count

        by_severity = {}
        for severity, count in (await self.session.execute(
            select(Notification.severity, func.count())
            .where(Notification.user_id == user_id, active)
            .group_by(Notification.severity)
        )).all():
            by_severity[severity] = count

        return {
            "total": totals[0] or 0,
            "unread": totals[1] or 0,
            "pinned": totals[2] or 0,
            "archived": archived,
            "by_category": by_category,
            "by_severity": by_severity,
        }

    async def find_duplicate(
        self, user_id: str, title: str, message: str,
        related_entity: str | None, related_id: int | None,
    ) -> Notification | None:
        """An identical unread notification created within the duplicate window."""
        since = self.clock() - DUPLICATE_WINDOW
        query = self._owned(user_id).where(
            Notification.title == title,
            Notification.message == message,
            Notification.is_read == False,
            Notification.created_at >= since,
        )
        if related_entity is None:
            query = query.where(Notification.related_entity.is_(None))
        else:
            query = query.where(Notification.related_entity == related_entity)
        if related_id is None:
            query = query.where(Notification.related_id.is_(None))
        else:
            query = query.where(Notification.related_id == related_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def count_trigger_window(
        self, trigger_key: str, user_id: str, since: datetime, related_id: int | None = None,
        per_entity: bool = True,
    ) -> int:
        """How many notifications a trigger produced for a user (and entity) since `since`."""
        query = select(func.count()).select_from(Notification).where(
            Notification.trigger_key == trigger_key,
            Notification.user_id == user_id,
            Notification.created_at >= since,
        )
        if per_entity:
            if related_id is None:
                query = query.where(Notification.related_id.is_(None))
            else:
                query = query.where(Notification.related_id == related_id)
        return (await self.session.execute(query)).scalar_one()

    async def free_window_slots(self, keys: list[str], since: datetime) -> list[str]:
        """The keys in `keys` not held by a notification created since `since`, in order.

        Keys still held by older notifications are released so they can be reused.
        """
        held = dict((await self.session.execute(
            select(Notification.dedup_key, Notification.created_at).where(Notification.dedup_key.in_(keys))
        )).all())
        stale = [key for key, created_at in held.items() if created_at < since]
        if stale:
            await self.session.execute(
                update(Notification)
                .where(Notification.dedup_key.in_(stale), Notification.created_at < since)
                .values(dedup_key=None)
                .execution_options(synchronize_session=False)
            )
        return [key for key in keys if key not in held or key in stale]

    # ── State changes ──

    async def mark_read(self, user_id: str, notification_id) -> Notification:
        notification = await self.get(user_id, notification_id)
        if notification.is_read:
            return notification
        notification.is_read = True
        notification.read_at = self.clock()
        await self.session.flush()
        await self.refresh_group(user_id, notification.group_key)
        return notification

    async def mark_all_read(self, user_id: str, category: str | None = None) -> int:
        query = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)
            .values(is_read=True, read_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        if category:
            query = query.where(Notification.category == category)
        result = await self.session.execute(query)
        await self.refresh_groups(user_id)
        return result.rowcount

    async def mark_unread(self, user_id: str, notification_id) -> Notification:
        notification = await self.get(user_id, notification_id)
        if not notification.is_read:
            return notification
        notification.is_read = False
        notification.read_at = None
        await self.session.flush()
        await self.refresh_group(user_id, notification.group_key)
        return notification

    async def archive(self, user_id: str, notification_id) -> Notification:
        notification = await self.get(user_id, notification_id)
        if notification.is_archived:
            return notification
        notification.is_archived = True
        notification.archived_at = self.clock()
        await self.session.flush()
        await self.refresh_group(user_id, notification.group_key)
        return notification

    async def unarchive(self, user_id: str, notification_id) -> Notification:
        notification = await self.get(user_id, notification_id)
        if not notification.is_archived:
            return notification
        notification.is_archived = False
        notification.archived_at = None
        await self.session.flush()
        await self.refresh_group(user_id, notification.group_key)
        return notification

    async def set_pinned(self, user_id: str, notification_id, pinned: bool) -> Notification:
        notification = await self.get(user_id, notification_id)
        if notification.is_pinned == pinned:
            return notification
        notification.is_pinned = pinned
        notification.pinned_at = self.clock() if pinned else None
        await self.session.flush()
        return notification

    async def set_channel_status(self, notification: Notification, channel: str, status: str) -> None:
        # Reassign so the JSON column registers the change
        notification.delivery_status = {**(notification.delivery_status or {}), channel: status}

    async def delete(self, user_id: str, notification_id) -> None:
        notification = await self.get(user_id, notification_id)
        group_key = notification.group_key
        await self.session.delete(notification)
        await self.session.flush()
        await self.refresh_group(user_id, group_key)

    # ── Groups ──

    async def attach_to_group(self, notification: Notification, title: str | None = None) -> NotificationGroup | None:
        """Roll a notification into its (user, groupKey) group, creating the group if needed."""
        if not notification.group_key:
            return None
        group = await ensure_row(
            self.session,
            NotificationGroup,
            key={"user_id": notification.user_id, "group_key": notification.group_key},
            defaults={
                "id": uuid.uuid4(),
                "group_type": notification.category,
                "title": title or notification.title,
                "related_entity": notification.related_entity,
                "related_id": notification.related_id,
                "last_activity_at": notification.created_at,
                "created_at": self.clock(),
                "updated_at": self.clock(),
            },
        )
        group.last_activity_at = max(group.last_activity_at, notification.created_at)
        group.description = notification.title
        await self._recount(group)
        return group

    async def _recount(self, group: NotificationGroup) -> None:
        counts = (await self.session.execute(
            select(
                func.count(),
                func.sum(case((Notification.is_read == False, 1), else_=0)),
            ).where(
                Notification.user_id == group.user_id,
                Notification.group_key == group.group_key,
                Notification.is_archived == False,
            )
        )).one()
        group.total_notifications = counts[0] or 0
        group.unread_notifications = counts[1] or 0
        await self.session.flush()

    async def refresh_group(self, user_id: str, group_key: str | None) -> None:
        if not group_key:
            return
        result = await self.session.execute(
            select(NotificationGroup).where(
                NotificationGroup.user_id == user_id, NotificationGroup.group_key == group_key
            )
        )
        group = result.scalar_one_or_none()
        if group is not None:
            await self._recount(group)

    async def refresh_groups(self, user_id: str) -> None:
        result = await self.session.execute(
            select(NotificationGroup).where(NotificationGroup.user_id == user_id)
        )
        for group in result.scalars().all():
            await self._recount(group)

    async def list_groups(self, user_id: str, limit: int = 50) -> list[NotificationGroup]:
        result = await self.session.execute(
            select(NotificationGroup)
            .where(NotificationGroup.user_id == user_id, NotificationGroup.total_notifications > 0)
            .order_by(NotificationGroup.last_activity_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_group(self, user_id: str, group_id) -> NotificationGroup:
        result = await self.session.execute(
            select(NotificationGroup).where(
                NotificationGroup.user_id == user_id, NotificationGroup.id == group_id
            )
        )
        group = result.scalar_one_or_none()
        if group is None:
            raise NotFoundError("NotificationGroup", group_id)
        return group

    async def group_notifications(self, user_id: str, group_id, limit: int = 50) -> list[Notification]:
        group = await self.get_group(user_id, group_id)
        result = await self.session.execute(
            self._owned(user_id)
            .where(Notification.group_key == group.group_key, self._active(self.clock()))
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def set_group_collapsed(self, user_id: str, group_id, collapsed: bool) -> NotificationGroup:
        group = await self.get_group(user_id, group_id)
        group.is_collapsed = collapsed
        await self.session.flush()
        return group

    async def mark_group_read(self, user_id: str, group_id) -> NotificationGroup:
        group = await self.get_group(user_id, group_id)
        await self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.group_key == group.group_key,
                Notification.is_read == False,
            )
            .values(is_read=True, read_at=self.clock())
            .execution_options(synchronize_session="fetch")
        )
        await self._recount(group)
        return group

    # ── Housekeeping ──

    async def delete_expired(self) -> int:
        now = self.clock()
        affected = (await self.session.execute(
            select(Notification.user_id, Notification.group_key)
            .where(Notification.expires_at.is_not(None), Notification.expires_at <= now)
            .distinct()
        )).all()
        result = await self.session.execute(
            delete(Notification)
            .where(Notification.expires_at.is_not(None), Notification.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        for user_id, group_key in affected:
            await self.refresh_group(user_id, group_key)
        return result.rowcount

    async def archive_read_before(self, user_id: str, cutoff: datetime) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read == True,
                Notification.is_archived == False,
                Notification.is_pinned == False,
                Notification.read_at < cutoff,
            )
            .values(is_archived=True, archived_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            await self.refresh_groups(user_id)
        return result.rowcount
