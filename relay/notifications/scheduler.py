import logging
import uuid
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from relay.config import settings
from relay.models.notification import NotificationChannel, NotificationMessage, NotificationStatus
from relay.monitoring.metrics import email_enqueued, email_retried
from relay.notifications.payloads import EmailPayload
from relay.services.outbox_events import EMAIL_NOTIFICATION_SCHEDULED, EmailNotificationScheduledEvent
from relay.services.outbox_publisher import TransactionalOutboxPublisher

logger = logging.getLogger(__name__)

MAX_MANUAL_REQUEUE_ATTEMPTS = 5


class EmailScheduler:
	"""Records a notification and its outbox event in one transaction"""

	def __init__(
			self,
			session: AsyncSession,
			publisher: Optional[TransactionalOutboxPublisher] = None,
			enabled: Optional[bool] = None,
	):
		self.session = session
		self.publisher = publisher or TransactionalOutboxPublisher(session)
		self.enabled = settings.EMAIL_NOTIFICATIONS_ENABLED if enabled is None else enabled

	async def find_by_correlation(
			self,
			notification_type: str,
			correlation_id: UUID,
			recipient: str,
	) -> Optional[NotificationMessage]:
		result = await self.session.execute(
			select(NotificationMessage)
			.where(
				NotificationMessage.type == notification_type,
				NotificationMessage.correlation_id == correlation_id,
				NotificationMessage.recipient == recipient,
			)
			.execution_options(populate_existing=True)
		)
		return result.scalar_one_or_none()

	async def schedule(self, payload: EmailPayload) -> Optional[UUID]:
		"""Returns the id of the notification that will carry this payload"""
		notification_type = payload.notification_type
		correlation_id = payload.correlation_id

		if not self.enabled:
			logger.info(
				f"Email notifications are disabled; skipping scheduling for {notification_type} "
				f"correlation {correlation_id}"
			)
			return None

		existing = await self.find_by_correlation(notification_type, correlation_id, payload.recipient_email)
		if existing is not None:
			await self._handle_existing(existing)
			return existing.id

		notification = NotificationMessage(
			id=uuid.uuid4(),
			channel=NotificationChannel.EMAIL,
			type=notification_type,
			correlation_id=correlation_id,
			recipient=payload.recipient_email,
			payload=payload.model_dump_json(),
			status=NotificationStatus.PENDING,
			attempts=0,
		)

		try:
			self.session.add(notification)
			await self._publish(notification)
			await self.session.commit()
		except IntegrityError as e:
			await self.session.rollback()
			concurrent = await self.find_by_correlation(notification_type, correlation_id, payload.recipient_email)
			if concurrent is None:
				raise
			logger.warning(
				f"Detected concurrent email scheduling for {notification_type} correlation {correlation_id}; "
				f"using existing notification {concurrent.id}: {e.orig}"
			)
			email_enqueued.labels(notification_type=notification_type).inc()
			return concurrent.id

		email_enqueued.labels(notification_type=notification_type).inc()
		logger.info(
			f"Created email notification {notification.id} and persisted outbox event for "
			f"{notification_type} correlation {correlation_id}"
		)
		return notification.id

	async def _handle_existing(self, existing: NotificationMessage):
		if existing.status != NotificationStatus.FAILED:
			logger.info(
				f"Found existing email notification {existing.id} with status {existing.status.value}; "
				f"no new notification created"
			)
			return

		if existing.attempts >= MAX_MANUAL_REQUEUE_ATTEMPTS:
			logger.warning(
				f"Skipping re-enqueue for notification {existing.id} because attempts reached limit "
				f"{MAX_MANUAL_REQUEUE_ATTEMPTS}"
			)
			return

		await self._publish(existing)
		await self.session.commit()
		email_retried.labels(notification_type=existing.type).inc()
		logger.info(
			f"Republished outbox event for failed email notification {existing.id} (attempts: {existing.attempts})"
		)

	async def _publish(self, notification: NotificationMessage) -> UUID:
		return await self.publisher.publish(
			EMAIL_NOTIFICATION_SCHEDULED,
			EmailNotificationScheduledEvent(
				notification_id=notification.id,
				correlation_id=notification.correlation_id,
				recipient=notification.recipient,
				notification_type=notification.type,
			),
			notification.correlation_id,
		)
