import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.config import settings
from relay.models.outbox import OutboxDeliveryStatus
from relay.monitoring.metrics import outbox_deliveries
from relay.services.outbox_handlers import DeliveryHandlerRegistry
from relay.services.outbox_service import OutboxService
from relay.services.policies import compute_backoff, to_safe_error
from relay.services.scheduling import Clock, utcnow

logger = logging.getLogger(__name__)


class OutboxDeliveryProcessor:
	"""Runs one outbox delivery through its handler"""

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession],
			handlers: DeliveryHandlerRegistry,
			clock: Clock = utcnow,
			max_attempts: int = settings.OUTBOX_MAX_ATTEMPTS,
	):
		self.session_factory = session_factory
		self.handlers = handlers
		self.clock = clock
		self.max_attempts = max_attempts

	async def process(self, delivery_id: UUID) -> Optional[OutboxDeliveryStatus]:
		"""Returns the status the delivery was left in, or None when it was not claimed"""
		async with self.session_factory() as db:
			outbox = OutboxService(db)

			claimed = await outbox.try_mark_delivery_processing(delivery_id, self.clock())
			await db.commit()
			if not claimed:
				logger.debug(f"Outbox delivery {delivery_id} not claimable. Skipping.")
				return None

			delivery = await outbox.find_delivery_with_event(delivery_id)
			if delivery is None or delivery.event is None:
				logger.warning(f"Outbox delivery {delivery_id} disappeared after claim")
				return None

			try:
				handler = self.handlers.get(delivery.handler_name)
				await handler.handle(delivery.event_id, delivery.event.correlation_id, delivery.event.payload)
			except Exception as e:
				logger.exception(f"Failed processing outbox delivery {delivery_id}")
				should_retry = delivery.attempts < self.max_attempts
				now = self.clock()
				delivery.status = OutboxDeliveryStatus.PENDING if should_retry else OutboxDeliveryStatus.FAILED
				delivery.next_attempt_at = now + compute_backoff(delivery.attempts) if should_retry else None
				delivery.processed_at = None if should_retry else now
				delivery.last_error = to_safe_error(e)
				await db.commit()

				if not should_retry:
					logger.error(
						f"Outbox delivery {delivery_id} ({delivery.handler_name}) failed permanently "
						f"after {delivery.attempts} attempts"
					)
				outbox_deliveries.labels(handler=delivery.handler_name, status=delivery.status.value).inc()
				return delivery.status

			delivery.status = OutboxDeliveryStatus.SUCCEEDED
			delivery.processed_at = self.clock()
			delivery.next_attempt_at = None
			delivery.last_error = None
			await db.commit()

			outbox_deliveries.labels(handler=delivery.handler_name, status=delivery.status.value).inc()
			logger.info(f"Outbox delivery {delivery_id} ({delivery.handler_name}) succeeded")
			return delivery.status
