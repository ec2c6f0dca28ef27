from relay.models.command_envelope import ActionExecutionLog, ActionExecutionStatus, CommandEnvelope
from relay.models.main_record import MainRecord, WeightUnit
from relay.models.notification import NotificationChannel, NotificationMessage, NotificationStatus
from relay.models.outbox import OutboxDelivery, OutboxDeliveryStatus, OutboxMessage, OutboxMessageStatus

__all__ = [
	"ActionExecutionLog",
	"ActionExecutionStatus",
	"CommandEnvelope",
	"MainRecord",
	"WeightUnit",
	"NotificationChannel",
	"NotificationMessage",
	"NotificationStatus",
	"OutboxDelivery",
	"OutboxDeliveryStatus",
	"OutboxMessage",
	"OutboxMessageStatus",
]
