"""HTTP API tests using httpx.AsyncClient against the ASGI app."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ventushub.api.v1.deps import get_registry, get_session_factory
from ventushub.config import Settings
from ventushub.db.session import get_db
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.main import create_app
from ventushub.models.delivery import DeliveryLogEntry
from ventushub.services.defaults import seed_defaults
from ventushub.services.notification_service import NotificationDraft, NotificationService

USER = {"X-User-Id": "u-1"}
OTHER = {"X-User-Id": "u-2"}
OPERATOR = {"X-User-Id": "op-1", "X-User-Role": "operator"}


@pytest_asyncio.fixture
async def client(session_factory):
    app = create_app()

    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    registry = ChannelRegistry(Settings(smtp_host="", push_gateway_url=""))
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _post_notification(client, headers=USER, **body):
    payload = {"title": "Bem-vindo", "message": "Sua conta está pronta.", "category": "system"}
    payload.update(body)
    resp = await client.post("/api/v1/notifications", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_user_header(self, client):
        resp = await client.get("/api/v1/notifications")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_operator_endpoints_require_role(self, client):
        assert (await client.get("/api/v1/notification-templates", headers=USER)).status_code == 403
        assert (await client.get("/api/v1/notification-metrics", headers=USER)).status_code == 403
        assert (await client.get("/api/v1/notification-templates", headers=OPERATOR)).status_code == 200

    @pytest.mark.asyncio
    async def test_admin_counts_as_operator(self, client):
        resp = await client.get("/api/v1/notification-triggers", headers={"X-User-Id": "a", "X-User-Role": "admin"})
        assert resp.status_code == 200


class TestNotifications:
    @pytest.mark.asyncio
    async def test_create_and_list(self, client):
        body = await _post_notification(client)
        assert body["created"] is True
        assert body["notification"]["deliveryStatus"] == {"in_app": "delivered"}

        resp = await client.get("/api/v1/notifications", headers=USER)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["unreadCount"] == 1
        assert data["notifications"][0]["title"] == "Bem-vindo"

        resp = await client.get("/api/v1/notifications", headers=OTHER)
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_read_pin_archive_delete(self, client):
        nid = (await _post_notification(client))["notification"]["id"]

        resp = await client.post(f"/api/v1/notifications/{nid}/read", headers=USER)
        assert resp.json()["isRead"] is True
        assert resp.json()["readAt"] is not None
        assert (await client.get("/api/v1/notifications/unread-count", headers=USER)).json() == {"unreadCount": 0}

        resp = await client.post(f"/api/v1/notifications/{nid}/unread", headers=USER)
        assert resp.json()["isRead"] is False

        resp = await client.post(f"/api/v1/notifications/{nid}/pin", headers=USER)
        assert resp.json()["isPinned"] is True

        resp = await client.post(f"/api/v1/notifications/{nid}/archive", headers=USER)
        assert resp.json()["isArchived"] is True
        assert (await client.get("/api/v1/notifications", headers=USER)).json()["total"] == 0
        archived = await client.get("/api/v1/notifications", params={"archived": "true"}, headers=USER)
        assert archived.json()["total"] == 1

        assert (await client.delete(f"/api/v1/notifications/{nid}", headers=USER)).status_code == 204
        assert (await client.get(f"/api/v1/notifications/{nid}", headers=USER)).status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_notification_is_404(self, client):
        nid = (await _post_notification(client))["notification"]["id"]
        assert (await client.post(f"/api/v1/notifications/{nid}/read", headers=OTHER)).status_code == 404

    @pytest.mark.asyncio
    async def test_bad_id_is_422(self, client):
        assert (await client.get("/api/v1/notifications/not-a-uuid", headers=USER)).status_code == 422

    @pytest.mark.asyncio
    async def test_read_all_and_summary(self, client):
        await _post_notification(client, title="a", severity="high")
        await _post_notification(client, title="b", category="property")

        resp = await client.post("/api/v1/notifications/read-all", params={"category": "system"}, headers=USER)
        assert resp.json() == {"updated": 1}

        summary = (await client.get("/api/v1/notifications/summary", headers=USER)).json()
        assert summary["total"] == 2
        assert summary["unread"] == 1
        assert summary["byCategory"] == {"system": 1, "property": 1}
        assert summary["bySeverity"] == {"high": 1, "normal": 1}

    @pytest.mark.asyncio
    async def test_notify_other_user_requires_operator(self, client):
        payload = {"userId": "u-2", "title": "x", "message": "y", "category": "system"}
        assert (await client.post("/api/v1/notifications", json=payload, headers=USER)).status_code == 403
        body = await _post_notification(client, headers=OPERATOR, userId="u-2")
        assert body["created"] is True
        assert (await client.get("/api/v1/notifications", headers=OTHER)).json()["total"] == 1

    @pytest.mark.asyncio
    async def test_suppressed_by_preferences(self, client):
        await client.put("/api/v1/notification-preferences", headers=USER,
                         json={"categoryPreferences": {"system": {"enabled": False}}})
        resp = await client.post("/api/v1/notifications", headers=USER,
                                 json={"title": "x", "message": "y", "category": "system"})
        assert resp.status_code == 201
        assert resp.json() == {"created": False, "notification": None}

    @pytest.mark.asyncio
    async def test_invalid_body(self, client):
        resp = await client.post("/api/v1/notifications", json={"title": "", "message": "y", "category": "system"},
                                 headers=USER)
        assert resp.status_code == 422


class TestPreferences:
    @pytest.mark.asyncio
    async def test_defaults(self, client):
        data = (await client.get("/api/v1/notification-preferences", headers=USER)).json()
        assert data["emailEnabled"] is True
        assert data["smsEnabled"] is False
        assert data["digestFrequency"] == "instant"
        assert data["maxNotificationsPerDay"] == 50
        assert data["timezone"] == "America/Sao_Paulo"

    @pytest.mark.asyncio
    async def test_partial_update(self, client):
        resp = await client.put("/api/v1/notification-preferences", headers=USER,
                                json={"quietHoursStart": "22:00", "quietHoursEnd": "07:00"})
        assert resp.status_code == 200
        resp = await client.put("/api/v1/notification-preferences", headers=USER, json={"smsEnabled": True})
        data = resp.json()
        assert data["smsEnabled"] is True
        assert data["quietHoursStart"] == "22:00"
        assert data["quietHoursEnd"] == "07:00"

    @pytest.mark.asyncio
    async def test_validation(self, client):
        bad_zone = await client.put("/api/v1/notification-preferences", headers=USER, json={"timezone": "Mars/Base"})
        assert bad_zone.status_code == 422
        bad_time = await client.put("/api/v1/notification-preferences", headers=USER, json={"quietHoursStart": "25:99"})
        assert bad_time.status_code == 422


class TestCatalogApi:
    TEMPLATE = {
        "templateKey": "visit_scheduled",
        "name": "Visita agendada",
        "titleTemplate": "Visita em {propertyAddress}",
        "messageTemplate": "Visita marcada para {visitDate}.",
        "defaultCategory": "property",
        "defaultChannels": ["in_app", "email"],
    }

    @pytest.mark.asyncio
    async def test_template_lifecycle(self, client):
        resp = await client.post("/api/v1/notification-templates", json=self.TEMPLATE, headers=OPERATOR)
        assert resp.status_code == 201
        assert resp.json()["version"] == 1

        resp = await client.patch("/api/v1/notification-templates/visit_scheduled", headers=OPERATOR,
                                  json={"titleTemplate": "Nova visita em {propertyAddress}"})
        assert resp.json()["version"] == 2

        resp = await client.patch("/api/v1/notification-templates/visit_scheduled", headers=OPERATOR,
                                  json={"name": "Visita"})
        assert resp.json()["version"] == 2

        resp = await client.post("/api/v1/notification-templates/visit_scheduled/preview", headers=OPERATOR,
                                 json={"context": {"propertyAddress": "Rua A, 1", "visitDate": "12/03"}})
        assert resp.json()["title"] == "Nova visita em Rua A, 1"
        assert resp.json()["message"] == "Visita marcada para 12/03."

        resp = await client.post("/api/v1/notification-templates/visit_scheduled/preview", headers=OPERATOR,
                                 json={"context": {}})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_template_key(self, client):
        await client.post("/api/v1/notification-templates", json=self.TEMPLATE, headers=OPERATOR)
        resp = await client.post("/api/v1/notification-templates", json=self.TEMPLATE, headers=OPERATOR)
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_referenced_template_cannot_be_deleted(self, client):
        await client.post("/api/v1/notification-templates", json=self.TEMPLATE, headers=OPERATOR)
        trigger = {
            "triggerKey": "visit_rule",
            "name": "Visita",
            "eventType": "property.updated",
            "entityType": "property",
            "templateKey": "visit_scheduled",
            "frequencyLimit": {"maxCount": 1, "windowHours": 2},
            "priority": 3,
        }
        resp = await client.post("/api/v1/notification-triggers", json=trigger, headers=OPERATOR)
        assert resp.status_code == 201
        assert resp.json()["templateKey"] == "visit_scheduled"

        assert (await client.delete("/api/v1/notification-templates/visit_scheduled",
                                    headers=OPERATOR)).status_code == 409
        assert (await client.delete("/api/v1/notification-triggers/visit_rule", headers=OPERATOR)).status_code == 204
        assert (await client.delete("/api/v1/notification-templates/visit_scheduled",
                                    headers=OPERATOR)).status_code == 204

    @pytest.mark.asyncio
    async def test_trigger_needs_existing_template(self, client):
        trigger = {"triggerKey": "x", "name": "x", "eventType": "property.updated", "entityType": "property",
                   "templateKey": "missing"}
        assert (await client.post("/api/v1/notification-triggers", json=trigger, headers=OPERATOR)).status_code == 404

    @pytest.mark.asyncio
    async def test_triggers_listed_in_firing_order(self, client, session):
        await seed_defaults(session)
        await session.commit()
        keys = [t["triggerKey"] for t in (await client.get("/api/v1/notification-triggers", headers=OPERATOR)).json()]
        assert keys[:2] == ["pendency_created_rule", "property_stage_advanced_rule"]


class TestEventsApi:
    EVENT = {
        "action": "property.pendency.created",
        "entityType": "property",
        "entityId": 42,
        "context": {"propertyAddress": "Rua das Flores, 120", "pendencyTitle": "IPTU atrasado"},
    }

    @pytest.mark.asyncio
    async def test_sync_processing_creates_notification(self, client, session):
        await seed_defaults(session)
        await session.commit()

        resp = await client.post("/api/v1/events", params={"sync": "true"}, json=self.EVENT, headers=USER)
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "processed"
        assert body["notificationCount"] == 1

        feed = (await client.get("/api/v1/notifications", headers=USER)).json()
        assert feed["notifications"][0]["title"] == "⚠️ Nova pendência: IPTU atrasado"
        assert feed["notifications"][0]["actionUrl"] == "/property/42"

        events = (await client.get("/api/v1/events", headers=USER)).json()
        assert len(events) == 1
        assert events[0]["triggeredNotifications"] is True
        assert events[0]["notificationCount"] == 1

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, client):
        resp = await client.post("/api/v1/events", params={"sync": "true"}, headers=USER,
                                 json={**self.EVENT, "action": "property.teleported"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_cannot_log_for_another_user(self, client):
        resp = await client.post("/api/v1/events", params={"sync": "true"}, headers=USER,
                                 json={**self.EVENT, "userId": "u-2"})
        assert resp.status_code == 403


class TestDeliveryApi:
    async def _seed_email(self, session, settings):
        n = await NotificationService(session, settings).create(NotificationDraft(
            user_id="u-1", title="Contrato assinado", message="Assinado.", category="contract",
        ))
        log = DeliveryLogEntry(
            notification_id=n.id, user_id="u-1", channel="email", status="sent",
            provider="smtp", external_id="<m-1@ventushub.com.br>", sent_at=n.created_at, created_at=n.created_at,
        )
        session.add(log)
        await session.commit()
        return n, log

    @pytest.mark.asyncio
    async def test_webhook_moves_status_forward_only(self, client, session, settings):
        n, _ = await self._seed_email(session, settings)
        hook = {"externalId": "<m-1@ventushub.com.br>", "status": "delivered"}

        resp = await client.post("/api/v1/delivery/webhooks/smtp", json=hook)
        assert resp.json() == {"updated": True, "status": "delivered"}
        resp = await client.post("/api/v1/delivery/webhooks/smtp", json=hook)
        assert resp.json() == {"updated": False, "status": "delivered"}

        resp = await client.post("/api/v1/delivery/webhooks/smtp", json={"externalId": "unknown", "status": "opened"})
        assert resp.json() == {"updated": False, "status": None}

        detail = (await client.get(f"/api/v1/notifications/{n.id}", headers=USER)).json()
        assert detail["deliveryStatus"]["email"] == "delivered"

    @pytest.mark.asyncio
    async def test_engagement_and_logs(self, client, session, settings):
        n, log = await self._seed_email(session, settings)

        resp = await client.post(f"/api/v1/delivery/logs/{log.id}/clicked", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["status"] == "clicked"
        assert resp.json()["openedAt"] is not None

        assert (await client.post(f"/api/v1/delivery/logs/{log.id}/opened", headers=OTHER)).status_code == 404

        logs = (await client.get(f"/api/v1/delivery/notifications/{n.id}/logs", headers=USER)).json()
        assert sorted(entry["channel"] for entry in logs) == ["email", "in_app"]
        assert (await client.get(f"/api/v1/delivery/notifications/{n.id}/logs", headers=OTHER)).status_code == 404

    @pytest.mark.asyncio
    async def test_providers_and_queue(self, client):
        providers = {p["channel"]: p for p in
                     (await client.get("/api/v1/delivery/providers", headers=OPERATOR)).json()}
        assert providers["in_app"]["configured"] is True
        assert providers["email"]["configured"] is False

        await client.put("/api/v1/notification-preferences", headers=USER, json={"emailAddress": "ana@example.com"})
        await _post_notification(client, deliveryChannels=["in_app", "email"])
        stats = (await client.get("/api/v1/delivery/queue", headers=OPERATOR)).json()
        assert stats["pending"] == 1

    @pytest.mark.asyncio
    async def test_operator_provider_check(self, client):
        check = {"email": "ops@ventushub.com.br"}
        assert (await client.post("/api/v1/delivery/providers/test", json=check, headers=USER)).status_code == 403
        assert (await client.post("/api/v1/delivery/providers/test", json={}, headers=OPERATOR)).status_code == 422

        resp = await client.post("/api/v1/delivery/providers/test", json=check, headers=OPERATOR)
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        [result] = body["results"]
        assert result["channel"] == "email"
        assert result["provider"] == "smtp"
        assert "not configured" in result["error"]


class TestPushApi:
    SUBSCRIPTION = {
        "endpoint": "https://fcm.googleapis.com/fcm/send/abc123",
        "keys": {"p256dh": "BNc...", "auth": "tBH..."},
        "expirationTime": None,
    }

    @pytest.mark.asyncio
    async def test_subscribe_list_unsubscribe(self, client):
        resp = await client.post("/api/v1/push/subscribe", json=self.SUBSCRIPTION,
                                 headers={**USER, "User-Agent": "Firefox/128"})
        assert resp.status_code == 201
        assert resp.json()["isActive"] is True
        assert resp.json()["userAgent"] == "Firefox/128"

        # Same endpoint again refreshes rather than duplicates
        await client.post("/api/v1/push/subscribe", json=self.SUBSCRIPTION, headers=USER)
        second = {**self.SUBSCRIPTION, "endpoint": "https://web.push.apple.com/xyz"}
        await client.post("/api/v1/push/subscribe", json=second, headers=USER)

        subs = (await client.get("/api/v1/push/subscriptions", headers=USER)).json()
        assert sorted(s["endpoint"] for s in subs) == sorted([self.SUBSCRIPTION["endpoint"], second["endpoint"]])
        assert (await client.get("/api/v1/push/subscriptions", headers=OTHER)).json() == []

        resp = await client.request("DELETE", "/api/v1/push/unsubscribe",
                                    json={"endpoint": second["endpoint"]}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["isActive"] is False
        resp = await client.request("DELETE", "/api/v1/push/unsubscribe",
                                    json={"endpoint": second["endpoint"]}, headers=OTHER)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_subscribe_turns_push_back_on(self, client):
        await client.put("/api/v1/notification-preferences", headers=USER, json={"pushEnabled": False})
        await client.post("/api/v1/push/subscribe", json=self.SUBSCRIPTION, headers=USER)
        prefs = (await client.get("/api/v1/notification-preferences", headers=USER)).json()
        assert prefs["pushEnabled"] is True

    @pytest.mark.asyncio
    async def test_invalid_endpoint(self, client):
        resp = await client.post("/api/v1/push/subscribe", json={"endpoint": "not-a-url"}, headers=USER)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_channel_test_needs_an_address(self, client):
        assert (await client.post("/api/v1/push/test", json={"type": "push"}, headers=USER)).status_code == 422
        assert (await client.post("/api/v1/push/test", json={"type": "email"}, headers=USER)).status_code == 422
        assert (await client.post("/api/v1/push/test", json={"type": "fax"}, headers=USER)).status_code == 422

        await client.post("/api/v1/push/subscribe", json=self.SUBSCRIPTION, headers=USER)
        resp = await client.post("/api/v1/push/test", json={"type": "push", "message": "Olá"}, headers=USER)
        assert resp.status_code == 200
        body = resp.json()
        # The push gateway is not configured in this app
        assert body["success"] is False
        assert body["devicesNotified"] == 0
        assert "not configured" in body["error"]

    @pytest.mark.asyncio
    async def test_vapid_key(self, client):
        resp = await client.get("/api/v1/push/vapid-key", headers=USER)
        assert resp.status_code == 200
        assert "publicKey" in resp.json()


class TestGroupsApi:
    @pytest.mark.asyncio
    async def test_grouped_by_entity(self, client):
        for title in ("Documento A", "Documento B"):
            await _post_notification(client, title=title, category="document", relatedEntity="property", relatedId=42)

        groups = (await client.get("/api/v1/notification-groups", headers=USER)).json()
        assert len(groups) == 1
        assert groups[0]["groupKey"] == "property:42:document"
        assert groups[0]["totalNotifications"] == 2

        gid = groups[0]["id"]
        items = (await client.get(f"/api/v1/notification-groups/{gid}/notifications", headers=USER)).json()
        assert {i["title"] for i in items} == {"Documento A", "Documento B"}

        resp = await client.post(f"/api/v1/notification-groups/{gid}/read", headers=USER)
        assert resp.json()["unreadNotifications"] == 0
        resp = await client.post(f"/api/v1/notification-groups/{gid}/collapse", headers=USER)
        assert resp.json()["isCollapsed"] is True


class TestMetricsApi:
    @pytest.mark.asyncio
    async def test_recompute_and_range(self, client):
        resp = await client.post("/api/v1/notification-metrics/2026-03-10/recompute", headers=OPERATOR)
        assert resp.status_code == 200
        assert resp.json()["datePartition"] == "2026-03-10"
        assert resp.json()["totalSent"] == 0

        resp = await client.get("/api/v1/notification-metrics", headers=OPERATOR,
                                params={"start": "2026-03-01", "end": "2026-03-31"})
        assert [m["datePartition"] for m in resp.json()] == ["2026-03-10"]

    @pytest.mark.asyncio
    async def test_inverted_range(self, client):
        resp = await client.get("/api/v1/notification-metrics", headers=OPERATOR,
                                params={"start": "2026-03-10", "end": "2026-03-01"})
        assert resp.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["database"] == "ok"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
