"""Per-device push subscriptions and how the worker fans push out to them."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from ventushub.core.circuit_breaker import CircuitBreakerSet
from ventushub.core.errors import DeliveryFatalError, NotFoundError
from ventushub.integrations.channels.base import ChannelProvider, DeliveryResult
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.integrations.channels.in_app import InAppProvider
from ventushub.models.delivery import QueueJob
from ventushub.models.preferences import NotificationPreferences, PushSubscription
from ventushub.services.delivery_worker import DeliveryWorker
from ventushub.services.notification_service import NotificationDraft, NotificationService
from ventushub.services.preferences import PreferencesGate
from ventushub.services.push_subscriptions import PushSubscriptionService


class GatewayStub(ChannelProvider):
    """Push provider that reports a fixed set of endpoints as unregistered."""

    channel = "push"
    name = "gateway_stub"

    def __init__(self, stale=(), fatal: bool = False):
        self.stale = list(stale)
        self.fatal = fatal
        self.targets = []

    def is_configured(self) -> bool:
        return True

    async def send(self, notification, target) -> DeliveryResult:
        self.targets.append(target)
        if self.fatal:
            raise DeliveryFatalError("Push token no longer valid on any device", channel="push",
                                     provider=self.name, stale_endpoints=self.stale)
        return DeliveryResult(external_id="push-1", stale_endpoints=self.stale)


async def _subscriptions(session_factory) -> dict:
    async with session_factory() as s:
        rows = (await s.execute(select(PushSubscription))).scalars().all()
        return {row.endpoint: row for row in rows}


class TestSubscriptionService:
    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent_per_endpoint(self, session, clock):
        service = PushSubscriptionService(session, clock=clock)
        first = await service.subscribe("u-1", "https://push.example.com/a", p256dh="k1", auth="a1")
        await service.unsubscribe("u-1", "https://push.example.com/a")
        assert first.is_active is False

        clock.advance(minutes=5)
        again = await service.subscribe("u-1", "https://push.example.com/a", p256dh="k2", auth="a2")
        assert again.id == first.id
        assert again.is_active is True
        assert again.p256dh_key == "k2"
        assert len(await service.list_for_user("u-1")) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_endpoint(self, session, clock):
        with pytest.raises(NotFoundError):
            await PushSubscriptionService(session, clock=clock).unsubscribe("u-1", "https://push.example.com/nope")

    @pytest.mark.asyncio
    async def test_active_devices_skip_expired_and_inactive(self, session, clock):
        service = PushSubscriptionService(session, clock=clock)
        await service.subscribe("u-1", "https://push.example.com/keys", p256dh="k", auth="a")
        await service.subscribe("u-1", "https://push.example.com/half-keys", p256dh="k")
        await service.subscribe("u-1", "https://push.example.com/expired", expiration_time=clock() - timedelta(minutes=1))
        await service.subscribe("u-1", "https://push.example.com/gone")
        await service.unsubscribe("u-1", "https://push.example.com/gone")
        await service.subscribe("u-2", "https://push.example.com/other")

        devices = {d.endpoint: d.keys for d in await service.active_devices("u-1")}
        assert devices == {
            "https://push.example.com/keys": {"p256dh": "k", "auth": "a"},
            "https://push.example.com/half-keys": None,
        }

    @pytest.mark.asyncio
    async def test_subscribe_enables_push_channel(self, session_factory, settings, clock):
        async with session_factory() as s:
            await PreferencesGate(s, settings, clock=clock).upsert("u-1", {"push_enabled": False})
            await s.commit()
        async with session_factory() as s:
            await PushSubscriptionService(s, clock=clock).subscribe("u-1", "https://push.example.com/a")
            await s.commit()
        async with session_factory() as s:
            prefs = (await s.execute(
                select(NotificationPreferences).where(NotificationPreferences.user_id == "u-1")
            )).scalar_one()
            assert prefs.push_enabled is True

    @pytest.mark.asyncio
    async def test_target_lists_devices_and_legacy_token(self, session, settings, clock):
        await PreferencesGate(session, settings, clock=clock).upsert("u-1", {"push_token": "native-token"})
        await PushSubscriptionService(session, clock=clock).subscribe("u-1", "https://push.example.com/a")

        target = await PreferencesGate(session, settings, clock=clock).target("u-1")
        assert [d.endpoint for d in target.push_devices] == ["https://push.example.com/a"]
        assert [d.endpoint for d in target.all_push_devices()] == ["https://push.example.com/a", "native-token"]


class TestWorkerFanOut:
    async def _queue_push(self, session_factory, settings, clock, endpoints):
        async with session_factory() as s:
            service = PushSubscriptionService(s, clock=clock)
            for endpoint in endpoints:
                await service.subscribe("u-1", endpoint)
            notification = await NotificationService(s, settings, clock=clock).create(NotificationDraft(
                user_id="u-1",
                title="Nova pendência: IPTU",
                message="Uma nova pendência foi identificada.",
                category="pendency",
                channels=["in_app", "push"],
            ))
            await s.commit()
            return notification

    def _worker(self, session_factory, settings, clock, push):
        registry = ChannelRegistry(
            settings,
            providers={"in_app": InAppProvider(), "push": push},
            breakers=CircuitBreakerSet(failure_threshold=5, recovery_timeout=60),
        )
        return DeliveryWorker(session_factory, registry, settings, clock=clock)

    @pytest.mark.asyncio
    async def test_stale_device_deactivated_others_marked_used(self, session_factory, settings, clock):
        a, b = "https://push.example.com/a", "https://push.example.com/b"
        await self._queue_push(session_factory, settings, clock, [a, b])
        push = GatewayStub(stale=[b])

        clock.advance(minutes=1)
        assert await self._worker(session_factory, settings, clock, push).run_once() == 1

        [target] = push.targets
        assert [d.endpoint for d in target.push_devices] == [a, b]
        [job] = await _all_jobs(session_factory)
        assert job.status == "completed"

        rows = await _subscriptions(session_factory)
        assert rows[a].is_active is True
        assert rows[a].last_used_at == clock()
        assert rows[b].is_active is False
        assert rows[b].last_used_at is None

    @pytest.mark.asyncio
    async def test_every_device_gone_fails_job_and_deactivates(self, session_factory, settings, clock):
        a = "https://push.example.com/a"
        await self._queue_push(session_factory, settings, clock, [a])

        worker = self._worker(session_factory, settings, clock, GatewayStub(stale=[a], fatal=True))
        assert await worker.run_once() == 1

        [job] = await _all_jobs(session_factory)
        assert job.status == "failed"
        rows = await _subscriptions(session_factory)
        assert rows[a].is_active is False


async def _all_jobs(session_factory) -> list:
    async with session_factory() as s:
        return list((await s.execute(select(QueueJob))).scalars().all())
