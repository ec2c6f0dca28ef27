import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.config import settings
from relay.models.outbox import OutboxMessage, OutboxMessageStatus
from relay.monitoring.metrics import outbox_messages_dispatched
from relay.services.outbox_handlers import DeliveryHandlerRegistry
from relay.services.outbox_service import OutboxService
from relay.services.policies import compute_backoff, to_safe_error
from relay.services.scheduling import Clock, JobScheduler, utcnow

logger = logging.getLogger(__name__)


@dataclass
class OutboxDispatchReport:
	released_messages: int = 0
	released_deliveries: int = 0
	claimed: int = 0
	skipped: int = 0
	processed: int = 0
	retried: int = 0
	failed: int = 0
	deliveries_created: int = 0
	deliveries_scheduled: int = 0


class OutboxDispatcher:
	"""Fans pending outbox messages out into one delivery per registered handler"""

	def __init__(
			self,
			session_factory: async_sessionmaker[AsyncSession],
			handlers: DeliveryHandlerRegistry,
			delivery_scheduler: JobScheduler,
			clock: Clock = utcnow,
			batch_size: int = settings.OUTBOX_BATCH_SIZE,
			max_attempts: int = settings.OUTBOX_MAX_ATTEMPTS,
			processing_timeout: timedelta = timedelta(seconds=settings.OUTBOX_PROCESSING_TIMEOUT_SECONDS),
	):
		self.session_factory = session_factory
		self.handlers = handlers
		self.delivery_scheduler = delivery_scheduler
		self.clock = clock
		self.batch_size = batch_size
		self.max_attempts = max_attempts
		self.processing_timeout = processing_timeout

	async def dispatch_pending(self) -> OutboxDispatchReport:
		report = OutboxDispatchReport()
		now = self.clock()
		scheduled: Set[UUID] = set()

		async with self.session_factory() as db:
			outbox = OutboxService(db)
			report.released_messages, report.released_deliveries = await outbox.release_stale(
				now, self.processing_timeout
			)

			candidates = await outbox.get_dispatchable_messages(now, self.batch_size)
			for message_id in candidates:
				claimed = await outbox.try_mark_message_processing(message_id, now)
				await db.commit()
				if not claimed:
					report.skipped += 1
					continue

				report.claimed += 1
				created = await self._dispatch_message(db, outbox, message_id, report)
				for delivery_id in created:
					self.delivery_scheduler.enqueue(delivery_id)
					scheduled.add(delivery_id)

			for delivery_id in await outbox.get_dispatchable_deliveries(now, self.batch_size):
				if delivery_id in scheduled:
					continue
				self.delivery_scheduler.enqueue(delivery_id)
				scheduled.add(delivery_id)

		report.deliveries_scheduled = len(scheduled)
		if report.claimed or report.deliveries_scheduled:
			logger.info(
				f"Outbox dispatch: {report.processed} processed, {report.retried} retried, {report.failed} failed, "
				f"{report.deliveries_created} deliveries created, {report.deliveries_scheduled} scheduled"
			)
		return report

	async def _dispatch_message(
			self,
			db: AsyncSession,
			outbox: OutboxService,
			message_id: UUID,
			report: OutboxDispatchReport,
	) -> List[UUID]:
		message = await outbox.find_message(message_id)
		if message is None:
			return []

		created: List[UUID] = []
		try:
			for handler in self.handlers.for_event_type(message.event_type):
				delivery_id = await outbox.add_delivery_if_absent(message.id, handler.handler_name, self.clock())
				if delivery_id is not None:
					created.append(delivery_id)

			message.status = OutboxMessageStatus.PROCESSED
			message.processed_at = self.clock()
			message.last_error = None
			message.next_attempt_at = None
			await db.commit()
		except Exception as e:
			logger.exception(f"Failed to dispatch outbox message {message_id}")
			await db.rollback()
			message = await outbox.find_message(message_id)
			if message is not None:
				self._mark_failed(message, e, report)
				await db.commit()
			return []

		report.processed += 1
		report.deliveries_created += len(created)
		outbox_messages_dispatched.labels(status=OutboxMessageStatus.PROCESSED.value).inc()
		return created

	def _mark_failed(self, message: OutboxMessage, error: Exception, report: OutboxDispatchReport):
		message.last_error = to_safe_error(error)
		if message.attempts >= self.max_attempts:
			message.status = OutboxMessageStatus.FAILED
			message.next_attempt_at = None
			report.failed += 1
			logger.error(f"Outbox message {message.id} permanently failed after {message.attempts} attempts")
		else:
			message.status = OutboxMessageStatus.PENDING
			message.next_attempt_at = self.clock() + compute_backoff(message.attempts)
			report.retried += 1
			logger.info(
				f"Outbox message {message.id} scheduled for retry #{message.attempts} at {message.next_attempt_at}"
			)
		outbox_messages_dispatched.labels(status=message.status.value).inc()
