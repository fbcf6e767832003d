import asyncio
from functools import partial

from ventushub.config import Settings
from ventushub.core.errors import DeliveryFatalError
from ventushub.integrations.channels.base import ChannelProvider, DeliveryResult, DeliveryTarget
from ventushub.services.email_service import send_email, template_digest, template_notification


class SmtpEmailProvider(ChannelProvider):
    channel = "email"
    name = "smtp"

    def __init__(self, settings: Settings):
        self.settings = settings

    def is_configured(self) -> bool:
        return bool(self.settings.smtp_host)

    async def _send(self, target: DeliveryTarget, subject: str, html: str) -> DeliveryResult:
        if not target.email:
            raise DeliveryFatalError(f"No email address for user {target.user_id}", channel=self.channel, provider=self.name)
        loop = asyncio.get_running_loop()
        message_id = await loop.run_in_executor(
            None, partial(send_email, target.email, subject, html, self.settings)
        )
        return DeliveryResult(external_id=message_id, status="sent")

    async def send(self, notification, target: DeliveryTarget) -> DeliveryResult:
        subject, html = template_notification(notification)
        return await self._send(target, subject, html)

    async def send_digest(self, notifications: list, target: DeliveryTarget) -> DeliveryResult:
        subject, html = template_digest(notifications)
        return await self._send(target, subject, html)
