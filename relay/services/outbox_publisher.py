from typing import Optional
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from relay.services.outbox_events import OutboxEventDefinition, OutboxEventEnvelope
from relay.services.outbox_service import OutboxService


class TransactionalOutboxPublisher:
	"""Adds outbox messages to the caller's session. Never commits."""

	def __init__(self, session: AsyncSession):
		self.outbox = OutboxService(session)

	async def publish(
			self,
			definition: OutboxEventDefinition,
			payload: BaseModel,
			correlation_id: UUID,
			next_attempt_at: Optional[datetime] = None,
	) -> UUID:
		return await self.publish_envelope(
			OutboxEventEnvelope.build(definition, payload, correlation_id, next_attempt_at)
		)

	async def publish_envelope(self, envelope: OutboxEventEnvelope) -> UUID:
		message = await self.outbox.add_message(
			event_type=envelope.event_type,
			payload=envelope.payload_json,
			correlation_id=envelope.correlation_id,
			next_attempt_at=envelope.next_attempt_at,
		)
		return message.id
