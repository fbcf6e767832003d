"""Error taxonomy for the notification subsystem.

Validation and lookup errors surface to API callers. Delivery and aggregation
errors never reach end users: the worker records them in the delivery log and
the metrics job logs and retries on its next run.
"""


class NotificationError(Exception):
    """Base class for all notification subsystem errors."""


class ValidationError(NotificationError):
    """Malformed event, template or request, rejected before persistence."""


class TemplateRenderError(ValidationError):
    """A template references a placeholder the render context does not provide."""

    def __init__(self, placeholder: str, template: str = ""):
        self.placeholder = placeholder
        self.template = template
        super().__init__(f"Missing value for placeholder '{placeholder}'")


class NotFoundError(NotificationError):
    """Reference to a missing notification, template, trigger or log row."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")


class ConflictError(NotificationError):
    """Duplicate under a uniqueness rule (frequency limit, unique key)."""


class DeliveryError(NotificationError):
    """Transient delivery failure. The job is retried with backoff."""

    def __init__(self, message: str, channel: str | None = None, provider: str | None = None,
                 stale_endpoints: list[str] | None = None):
        self.channel = channel
        self.provider = provider
        self.stale_endpoints = stale_endpoints or []
        super().__init__(message)


class DeliveryFatalError(DeliveryError):
    """Permanent delivery failure (invalid address, rejected payload). Never retried."""


class AggregationError(NotificationError):
    """Metrics computation failed."""
