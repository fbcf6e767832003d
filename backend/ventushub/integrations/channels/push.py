import logging

import httpx

from ventushub.config import Settings
from ventushub.core.errors import DeliveryError, DeliveryFatalError
from ventushub.integrations.channels.base import ChannelProvider, DeliveryResult, DeliveryTarget, PushDevice
from ventushub.services.email_service import absolute_url

logger = logging.getLogger(__name__)


class PushGatewayProvider(ChannelProvider):
    """Mobile/web push through an HTTP push gateway (FCM/APNs/Web Push relay).

    A user may have several devices. Each gets its own gateway request, and
    the send counts as delivered when at least one device accepted it.
    """

    channel = "push"
    name = "push_gateway"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.settings.push_gateway_url)

    @staticmethod
    def build_payload(notification, device: PushDevice | str) -> dict:
        if isinstance(device, str):
            device = PushDevice(endpoint=device)
        payload = {
            "token": device.endpoint,
            "title": notification.title,
            "body": notification.message,
            "data": {
                "notificationId": str(notification.id),
                "category": notification.category,
                "severity": notification.severity,
                "actionUrl": absolute_url(notification.action_url),
            },
            "priority": "high" if notification.severity in ("high", "critical") else "normal",
        }
        if device.keys:
            payload["keys"] = device.keys
        return payload

    async def _post(self, client, notification, device: PushDevice) -> httpx.Response:
        s = self.settings
        headers = {"Authorization": f"Bearer {s.push_gateway_token}"} if s.push_gateway_token else {}
        return await client.post(s.push_gateway_url, json=self.build_payload(notification, device), headers=headers)

    async def send(self, notification, target: DeliveryTarget) -> DeliveryResult:
        devices = target.all_push_devices()
        if not devices:
            raise DeliveryFatalError(f"No push device for user {target.user_id}", channel=self.channel, provider=self.name)

        accepted, stale, errors = [], [], []
        client = self._client or httpx.AsyncClient(timeout=self.settings.delivery_timeout_seconds)
        try:
            for device in devices:
                try:
                    resp = await self._post(client, notification, device)
                except httpx.HTTPError as e:
                    errors.append(f"request failed: {e}")
                    continue
                if resp.status_code in (404, 410):
                    # Unregistered on the device side
                    stale.append(device.endpoint)
                elif resp.status_code >= 400:
                    errors.append(f"gateway returned {resp.status_code}")
                else:
                    body = resp.json() if resp.content else {}
                    accepted.append(body.get("id") or body.get("messageId"))
        finally:
            if self._client is None:
                await client.aclose()

        if accepted:
            if errors:
                logger.warning(
                    f"Push for user {target.user_id} reached {len(accepted)}/{len(devices)} device(s): {'; '.join(errors)}"
                )
            return DeliveryResult(external_id=accepted[0], status="sent", stale_endpoints=stale)
        if errors:
            raise DeliveryError(
                f"Push gateway {errors[0]}", channel=self.channel, provider=self.name, stale_endpoints=stale
            )
        raise DeliveryFatalError(
            "Push token no longer valid on any device", channel=self.channel, provider=self.name, stale_endpoints=stale
        )
