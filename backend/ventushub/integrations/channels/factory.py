import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from ventushub.config import Settings, get_settings
from ventushub.core.circuit_breaker import CircuitBreakerSet
from ventushub.core.errors import DeliveryError, DeliveryFatalError
from ventushub.integrations.channels.base import ChannelProvider, DeliveryTarget
from ventushub.integrations.channels.email import SmtpEmailProvider
from ventushub.integrations.channels.in_app import InAppProvider
from ventushub.integrations.channels.push import PushGatewayProvider
from ventushub.integrations.channels.sms import TwilioSmsProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    "in_app": InAppProvider,
    "email": SmtpEmailProvider,
    "push": PushGatewayProvider,
    "sms": TwilioSmsProvider,
}


@dataclass
class CheckMessage:
    """Stand-in notification sent by provider self-checks."""
    message: str = (
        "Esta é uma mensagem de teste do VentusHub. "
        "Se você a recebeu, o canal está funcionando corretamente."
    )
    title: str = "Teste de Notificação"
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    category: str = "system"
    severity: str = "low"
    action_url: str | None = "/dashboard"


class ChannelRegistry:
    """Providers and their circuit breakers for one worker process."""

    def __init__(self, settings: Settings | None = None,
                 providers: dict[str, ChannelProvider] | None = None,
                 breakers: CircuitBreakerSet | None = None):
        self.settings = settings or get_settings()
        if providers is None:
            providers = {}
            for channel, cls in PROVIDERS.items():
                providers[channel] = cls() if cls is InAppProvider else cls(self.settings)
        self.providers = providers
        self.breakers = breakers or CircuitBreakerSet()

    def get(self, channel: str) -> ChannelProvider:
        provider = self.providers.get(channel)
        if provider is None:
            raise DeliveryFatalError(f"No provider for channel '{channel}'", channel=channel)
        if not provider.is_configured():
            raise DeliveryFatalError(f"Provider '{provider.name}' is not configured", channel=channel, provider=provider.name)
        return provider

    def describe(self) -> list[dict]:
        """Provider availability for the operator API."""
        return [
            {
                "channel": channel,
                "provider": provider.name,
                "configured": provider.is_configured(),
                "circuit": self.breakers.get(channel).get_status(),
            }
            for channel, provider in self.providers.items()
        ]

    async def check(self, channel: str, target: DeliveryTarget, message: CheckMessage | None = None) -> dict:
        """Send one test message through a channel's provider.

        Bypasses the circuit breaker, so a check never opens or closes it.
        Failures are reported in the result instead of raised.
        """
        provider = self.providers.get(channel)
        outcome = {
            "channel": channel,
            "provider": provider.name if provider else None,
            "success": False,
            "external_id": None,
            "error": None,
        }
        try:
            provider = self.get(channel)
            result = await asyncio.wait_for(
                provider.send(message or CheckMessage(), target), timeout=self.settings.delivery_timeout_seconds
            )
        except asyncio.TimeoutError:
            outcome["error"] = f"timed out after {self.settings.delivery_timeout_seconds}s"
        except DeliveryError as e:
            outcome["error"] = str(e)
        except Exception as e:
            logger.exception(f"Provider check for {channel} raised: {e}")
            outcome["error"] = f"{type(e).__name__}: {e}"
        else:
            outcome["success"] = True
            outcome["external_id"] = result.external_id
        logger.info(f"Provider check {channel}: {'ok' if outcome['success'] else outcome['error']}")
        return outcome

    async def check_all(self, target: DeliveryTarget) -> list[dict]:
        """Check every external channel the target has an address for."""
        addressed = {
            "email": bool(target.email),
            "sms": bool(target.phone),
            "push": bool(target.all_push_devices()),
        }
        return [await self.check(channel, target) for channel, has_address in addressed.items() if has_address]
