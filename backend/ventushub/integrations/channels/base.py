from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ventushub.core.errors import DeliveryFatalError


@dataclass
class PushDevice:
    """One registered push endpoint. `keys` holds the Web Push p256dh/auth pair."""
    endpoint: str
    keys: dict | None = None


@dataclass
class DeliveryTarget:
    """Where a user receives a channel's copy. Built from their preferences and devices."""
    user_id: str
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None
    push_devices: list[PushDevice] = field(default_factory=list)
    locale: str = "pt-BR"
    timezone: str = "America/Sao_Paulo"

    def all_push_devices(self) -> list[PushDevice]:
        devices = list(self.push_devices)
        if self.push_token and all(d.endpoint != self.push_token for d in devices):
            devices.append(PushDevice(endpoint=self.push_token))
        return devices


@dataclass
class DeliveryResult:
    external_id: str | None
    status: str = "sent"  # sent | delivered
    # Push endpoints the gateway reported as unregistered
    stale_endpoints: list[str] = field(default_factory=list)


class ChannelProvider(ABC):
    """Abstract interface for delivery channel providers.

    `send` raises DeliveryError for transient failures and DeliveryFatalError
    for permanent ones (missing or rejected address).
    """

    channel: str
    name: str

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def send(self, notification, target: DeliveryTarget) -> DeliveryResult:
        ...

    async def send_digest(self, notifications: list, target: DeliveryTarget) -> DeliveryResult:
        raise DeliveryFatalError(f"{self.name} does not support digests", channel=self.channel, provider=self.name)
