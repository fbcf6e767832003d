from enum import Enum


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    REMINDER = "reminder"


class Severity(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self.value]


SEVERITY_RANK = {"low": 0, "normal": 1, "high": 2, "critical": 3}

# Queue priority per severity; the worker claims higher values first.
SEVERITY_QUEUE_PRIORITY = {"low": 0, "normal": 10, "high": 20, "critical": 30}


class Channel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


EXTERNAL_CHANNELS = (Channel.EMAIL.value, Channel.PUSH.value, Channel.SMS.value)


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    FAILED = "failed"
    BOUNCED = "bounced"


# Forward-only ordering; failed and bounced are terminal and sit outside it.
DELIVERY_PROGRESSION = ["pending", "sent", "delivered", "opened", "clicked"]
TERMINAL_DELIVERY_STATUSES = {"failed", "bounced"}


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    SEND_NOTIFICATION = "send_notification"
    PROCESS_DIGEST = "process_digest"
    CLEANUP_EXPIRED = "cleanup_expired"


class DigestFrequency(str, Enum):
    INSTANT = "instant"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class EntityType(str, Enum):
    PROPERTY = "property"
    CLIENT = "client"
    CLIENT_NOTE = "client_note"
    DOCUMENT = "document"
    PENDENCY = "pendency"
    PROPOSAL = "proposal"
    CONTRACT = "contract"
    USER = "user"
    SYSTEM = "system"
    FINANCIAL = "financial"
    WORKFLOW = "workflow"
    REGISTRY = "registry"


class EventType(str, Enum):
    # Property
    PROPERTY_CREATED = "property.created"
    PROPERTY_UPDATED = "property.updated"
    PROPERTY_DELETED = "property.deleted"
    STAGE_ADVANCED = "property.stage.advanced"
    STAGE_BLOCKED = "property.stage.blocked"
    PENDENCY_CREATED = "property.pendency.created"
    PENDENCY_RESOLVED = "property.pendency.resolved"
    DOCUMENT_UPLOADED = "property.document.uploaded"
    DOCUMENT_MISSING = "property.document.missing"
    DOCUMENT_APPROVED = "property.document.approved"
    DOCUMENT_REJECTED = "property.document.rejected"

    # Client
    CLIENT_CREATED = "client.created"
    CLIENT_UPDATED = "client.updated"
    CLIENT_NOTE_SAVED = "client.note.saved"
    CLIENT_REMINDER_DUE = "client.reminder.due"
    CLIENT_FOLLOWUP_REQUIRED = "client.followup.required"
    CLIENT_MEETING_SCHEDULED = "client.meeting.scheduled"
    CLIENT_CALL_COMPLETED = "client.call.completed"

    # Contract
    PROPOSAL_RECEIVED = "contract.proposal.received"
    PROPOSAL_ACCEPTED = "contract.proposal.accepted"
    PROPOSAL_REJECTED = "contract.proposal.rejected"
    CONTRACT_SIGNED = "contract.signed"
    CONTRACT_EXPIRES = "contract.expires"
    CONTRACT_RENEWED = "contract.renewed"

    # User / system
    USER_LOGIN = "user.login"
    USER_INACTIVE = "user.inactive"
    USER_PROFILE_UPDATED = "user.profile.updated"
    SYSTEM_MAINTENANCE = "system.maintenance"
    SYSTEM_UPDATE = "system.update"
    BACKUP_COMPLETED = "system.backup.completed"

    # Financial
    PAYMENT_DUE = "financial.payment.due"
    PAYMENT_OVERDUE = "financial.payment.overdue"
    COMMISSION_CALCULATED = "financial.commission.calculated"
    COMMISSION_PAID = "financial.commission.paid"

    # Workflow
    APPROVAL_REQUIRED = "workflow.approval.required"
    APPROVAL_GRANTED = "workflow.approval.granted"
    DEADLINE_APPROACHING = "workflow.deadline.approaching"
    TASK_COMPLETED = "workflow.task.completed"
    TASK_OVERDUE = "workflow.task.overdue"

    # Registry
    REGISTRY_SUBMITTED = "registry.submitted"
    REGISTRY_APPROVED = "registry.approved"
    REGISTRY_REJECTED = "registry.rejected"
    REGISTRY_COMPLETED = "registry.completed"
