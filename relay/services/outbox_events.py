from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Generic, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class EmailNotificationScheduledEvent(BaseModel):
	model_config = ConfigDict(frozen=True)

	notification_id: UUID
	correlation_id: UUID
	recipient: str
	notification_type: str


@dataclass(frozen=True)
class OutboxEventDefinition(Generic[PayloadT]):
	"""Binds an outbox event type name to its payload model"""

	event_type: str
	payload_type: Type[PayloadT]

	def serialize(self, payload: PayloadT) -> str:
		return payload.model_dump_json()

	def deserialize(self, payload_json: str) -> PayloadT:
		return self.payload_type.model_validate_json(payload_json)


@dataclass(frozen=True)
class OutboxEventEnvelope:
	event_type: str
	payload_json: str
	correlation_id: UUID
	next_attempt_at: Optional[datetime] = None

	@classmethod
	def build(
			cls,
			definition: OutboxEventDefinition,
			payload: BaseModel,
			correlation_id: UUID,
			next_attempt_at: Optional[datetime] = None,
	) -> "OutboxEventEnvelope":
		return cls(
			event_type=definition.event_type,
			payload_json=definition.serialize(payload),
			correlation_id=correlation_id,
			next_attempt_at=next_attempt_at,
		)


EMAIL_NOTIFICATION_SCHEDULED = OutboxEventDefinition(
	"email.notification.scheduled",
	EmailNotificationScheduledEvent,
)

OUTBOX_EVENT_TYPES: Dict[str, OutboxEventDefinition] = {
	EMAIL_NOTIFICATION_SCHEDULED.event_type: EMAIL_NOTIFICATION_SCHEDULED,
}
