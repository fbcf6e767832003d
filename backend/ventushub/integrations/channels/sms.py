import logging

import httpx

from ventushub.config import Settings
from ventushub.core.errors import DeliveryError, DeliveryFatalError
from ventushub.integrations.channels.base import ChannelProvider, DeliveryResult, DeliveryTarget

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
SMS_MAX_LENGTH = 320


class TwilioSmsProvider(ChannelProvider):
    channel = "sms"
    name = "twilio"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_from_number)

    @staticmethod
    def format_body(notification) -> str:
        body = f"{notification.title}: {notification.message}"
        if len(body) > SMS_MAX_LENGTH:
            body = body[: SMS_MAX_LENGTH - 3] + "..."
        return body

    async def send(self, notification, target: DeliveryTarget) -> DeliveryResult:
        if not target.phone:
            raise DeliveryFatalError(f"No phone number for user {target.user_id}", channel=self.channel, provider=self.name)

        s = self.settings
        url = f"{TWILIO_API}/Accounts/{s.twilio_account_sid}/Messages.json"
        data = {"From": s.twilio_from_number, "To": target.phone, "Body": self.format_body(notification)}
        client = self._client or httpx.AsyncClient(timeout=s.delivery_timeout_seconds)
        try:
            resp = await client.post(url, data=data, auth=(s.twilio_account_sid, s.twilio_auth_token))
        except httpx.HTTPError as e:
            raise DeliveryError(f"Twilio request failed: {e}", channel=self.channel, provider=self.name) from e
        finally:
            if self._client is None:
                await client.aclose()

        if resp.status_code == 429 or resp.status_code >= 500:
            raise DeliveryError(f"Twilio returned {resp.status_code}", channel=self.channel, provider=self.name)
        if resp.status_code >= 400:
            # 400: invalid or unreachable number. Retrying will not help.
            raise DeliveryFatalError(
                f"Twilio rejected message ({resp.status_code}): {resp.text[:200]}",
                channel=self.channel, provider=self.name,
            )

        payload = resp.json()
        logger.info("SMS queued at Twilio for user %s: %s", target.user_id, payload.get("sid"))
        return DeliveryResult(external_id=payload.get("sid"), status="sent")
