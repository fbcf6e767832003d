from ventushub.integrations.channels.base import ChannelProvider, DeliveryResult, DeliveryTarget


class InAppProvider(ChannelProvider):
    """The notification row is the in-app copy; delivering it is a no-op."""

    channel = "in_app"
    name = "in_app"

    def is_configured(self) -> bool:
        return True

    async def send(self, notification, target: DeliveryTarget) -> DeliveryResult:
        return DeliveryResult(external_id=str(notification.id), status="delivered")
