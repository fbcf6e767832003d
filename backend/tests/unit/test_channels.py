"""Tests for channel providers and the channel registry."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ventushub.config import Settings
from ventushub.core.errors import DeliveryError, DeliveryFatalError
from ventushub.integrations.channels.base import DeliveryTarget, PushDevice
from ventushub.integrations.channels.email import SmtpEmailProvider
from ventushub.integrations.channels.factory import ChannelRegistry, CheckMessage
from ventushub.integrations.channels.in_app import InAppProvider
from ventushub.integrations.channels.push import PushGatewayProvider
from ventushub.integrations.channels.sms import SMS_MAX_LENGTH, TwilioSmsProvider


def _notification(**overrides):
    values = dict(
        id=uuid.uuid4(),
        title="Nova pendência: IPTU",
        message="Uma nova pendência foi identificada.",
        severity="high",
        category="pendency",
        action_url="/property/42",
        created_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _client(status_code: int, body: dict | None = None):
    client = MagicMock()
    client.post = AsyncMock(return_value=httpx.Response(status_code, json=body or {}))
    return client


@pytest.fixture
def sms_settings():
    return Settings(twilio_account_sid="AC123", twilio_auth_token="secret", twilio_from_number="+5511999990000")


@pytest.fixture
def push_settings():
    return Settings(push_gateway_url="https://push.example.com/send", push_gateway_token="tok")


TARGET = DeliveryTarget(user_id="u-1", email="ana@example.com", phone="+5511988887777", push_token="device-token")


class TestInApp:
    @pytest.mark.asyncio
    async def test_always_delivered(self):
        n = _notification()
        result = await InAppProvider().send(n, DeliveryTarget(user_id="u-1"))
        assert result.status == "delivered"
        assert result.external_id == str(n.id)


class TestSms:
    def test_body_truncated(self):
        body = TwilioSmsProvider.format_body(_notification(message="x" * 1000))
        assert len(body) == SMS_MAX_LENGTH
        assert body.endswith("...")

    @pytest.mark.asyncio
    async def test_sent(self, sms_settings):
        client = _client(201, {"sid": "SM1"})
        result = await TwilioSmsProvider(sms_settings, client=client).send(_notification(), TARGET)
        assert result.external_id == "SM1"
        assert result.status == "sent"
        _, kwargs = client.post.call_args
        assert kwargs["data"]["To"] == "+5511988887777"

    @pytest.mark.asyncio
    async def test_missing_phone_is_fatal(self, sms_settings):
        with pytest.raises(DeliveryFatalError):
            await TwilioSmsProvider(sms_settings, client=_client(201)).send(_notification(), DeliveryTarget(user_id="u-1"))

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, sms_settings):
        with pytest.raises(DeliveryError) as exc_info:
            await TwilioSmsProvider(sms_settings, client=_client(503)).send(_notification(), TARGET)
        assert not isinstance(exc_info.value, DeliveryFatalError)

    @pytest.mark.asyncio
    async def test_rejected_number_is_fatal(self, sms_settings):
        with pytest.raises(DeliveryFatalError):
            await TwilioSmsProvider(sms_settings, client=_client(400, {"message": "invalid"})).send(_notification(), TARGET)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, sms_settings):
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("boom"))
        with pytest.raises(DeliveryError):
            await TwilioSmsProvider(sms_settings, client=client).send(_notification(), TARGET)


class TestPush:
    def test_payload(self):
        n = _notification(severity="critical")
        payload = PushGatewayProvider.build_payload(n, "device-token")
        assert payload["priority"] == "high"
        assert payload["data"]["notificationId"] == str(n.id)
        assert payload["data"]["actionUrl"].endswith("/property/42")

    @pytest.mark.asyncio
    async def test_sent(self, push_settings):
        client = _client(200, {"id": "push-1"})
        result = await PushGatewayProvider(push_settings, client=client).send(_notification(), TARGET)
        assert result.external_id == "push-1"
        _, kwargs = client.post.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}

    @pytest.mark.asyncio
    async def test_unregistered_token_is_fatal(self, push_settings):
        with pytest.raises(DeliveryFatalError):
            await PushGatewayProvider(push_settings, client=_client(410)).send(_notification(), TARGET)

    @pytest.mark.asyncio
    async def test_fans_out_to_every_device(self, push_settings):
        client = MagicMock()
        client.post = AsyncMock(side_effect=[
            httpx.Response(200, json={"id": "push-1"}),
            httpx.Response(410),
            httpx.Response(200, json={"messageId": "push-3"}),
        ])
        target = DeliveryTarget(user_id="u-1", push_token="native-token", push_devices=[
            PushDevice(endpoint="https://fcm.example.com/a", keys={"p256dh": "k", "auth": "a"}),
            PushDevice(endpoint="https://fcm.example.com/b"),
        ])
        result = await PushGatewayProvider(push_settings, client=client).send(_notification(), target)
        assert result.external_id == "push-1"
        assert result.stale_endpoints == ["https://fcm.example.com/b"]

        sent = [call.kwargs["json"] for call in client.post.call_args_list]
        assert [p["token"] for p in sent] == ["https://fcm.example.com/a", "https://fcm.example.com/b", "native-token"]
        assert sent[0]["keys"] == {"p256dh": "k", "auth": "a"}
        assert "keys" not in sent[1]

    @pytest.mark.asyncio
    async def test_all_devices_unregistered_is_fatal(self, push_settings):
        client = MagicMock()
        client.post = AsyncMock(return_value=httpx.Response(404))
        target = DeliveryTarget(user_id="u-1", push_devices=[PushDevice("https://a"), PushDevice("https://b")])
        with pytest.raises(DeliveryFatalError) as exc_info:
            await PushGatewayProvider(push_settings, client=client).send(_notification(), target)
        assert exc_info.value.stale_endpoints == ["https://a", "https://b"]

    @pytest.mark.asyncio
    async def test_gateway_outage_is_transient(self, push_settings):
        client = MagicMock()
        client.post = AsyncMock(side_effect=[httpx.Response(410), httpx.ConnectError("boom")])
        target = DeliveryTarget(user_id="u-1", push_devices=[PushDevice("https://a"), PushDevice("https://b")])
        with pytest.raises(DeliveryError) as exc_info:
            await PushGatewayProvider(push_settings, client=client).send(_notification(), target)
        assert not isinstance(exc_info.value, DeliveryFatalError)
        assert exc_info.value.stale_endpoints == ["https://a"]

    @pytest.mark.asyncio
    async def test_no_device_is_fatal(self, push_settings):
        with pytest.raises(DeliveryFatalError):
            await PushGatewayProvider(push_settings, client=_client(200)).send(_notification(), DeliveryTarget(user_id="u-1"))

    def test_token_already_registered_as_device_sent_once(self):
        target = DeliveryTarget(user_id="u-1", push_token="https://a", push_devices=[PushDevice("https://a")])
        assert [d.endpoint for d in target.all_push_devices()] == ["https://a"]


class TestEmailProvider:
    @pytest.mark.asyncio
    async def test_sends_through_smtp(self):
        settings = Settings(smtp_host="smtp.example.com")
        with patch("ventushub.integrations.channels.email.send_email", return_value="<id@ventushub.com.br>") as send:
            result = await SmtpEmailProvider(settings).send(_notification(), TARGET)
        assert result.external_id == "<id@ventushub.com.br>"
        assert send.call_args.args[0] == "ana@example.com"

    @pytest.mark.asyncio
    async def test_missing_address_is_fatal(self):
        with pytest.raises(DeliveryFatalError):
            await SmtpEmailProvider(Settings(smtp_host="smtp.example.com")).send(_notification(), DeliveryTarget(user_id="u-1"))


class TestRegistry:
    def test_unconfigured_provider_is_fatal(self):
        registry = ChannelRegistry(Settings(smtp_host=""))
        with pytest.raises(DeliveryFatalError):
            registry.get("email")

    def test_unknown_channel_is_fatal(self):
        with pytest.raises(DeliveryFatalError):
            ChannelRegistry(Settings()).get("fax")

    def test_describe(self):
        registry = ChannelRegistry(Settings(smtp_host="smtp.example.com"))
        described = {p["channel"]: p for p in registry.describe()}
        assert described["in_app"]["configured"] is True
        assert described["email"]["configured"] is True
        assert described["sms"]["configured"] is False
        assert described["email"]["circuit"]["state"] == "closed"

    @pytest.mark.asyncio
    async def test_check_reports_unconfigured_provider(self):
        registry = ChannelRegistry(Settings(smtp_host=""))
        outcome = await registry.check("email", TARGET)
        assert outcome["success"] is False
        assert outcome["provider"] == "smtp"
        assert "not configured" in outcome["error"]

    @pytest.mark.asyncio
    async def test_check_sends_without_touching_breaker(self, sms_settings):
        client = _client(201, {"sid": "SM9"})
        registry = ChannelRegistry(sms_settings, providers={"sms": TwilioSmsProvider(sms_settings, client=client)})
        outcome = await registry.check("sms", TARGET, CheckMessage(message="Teste do canal"))
        assert outcome == {"channel": "sms", "provider": "twilio", "success": True, "external_id": "SM9", "error": None}
        assert "Teste do canal" in client.post.call_args.kwargs["data"]["Body"]
        assert registry.breakers.get("sms").get_status()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_check_all_skips_channels_without_address(self, sms_settings):
        registry = ChannelRegistry(sms_settings, providers={"sms": TwilioSmsProvider(sms_settings, client=_client(503))})
        results = await registry.check_all(DeliveryTarget(user_id="op-1", phone="+5511988887777"))
        assert [r["channel"] for r in results] == ["sms"]
        assert results[0]["success"] is False
        assert "503" in results[0]["error"]
