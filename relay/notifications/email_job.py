import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.exceptions import NotificationDeliveryError
from relay.models.notification import NotificationMessage, NotificationStatus
from relay.monitoring.metrics import email_failed, email_retried, email_sent
from relay.notifications.composer import EmailTemplateComposer
from relay.notifications.sender import EmailSender
from relay.services.policies import to_safe_error
from relay.services.scheduling import Clock, utcnow

logger = logging.getLogger(__name__)

SENDER_DISABLED_ERROR = "Email sender is disabled."


class EmailJobService:
	"""Sends one stored notification and records the outcome on it"""

	def __init__(
			self,
			session: AsyncSession,
			composer: EmailTemplateComposer,
			sender: EmailSender,
			clock: Clock = utcnow,
	):
		self.session = session
		self.composer = composer
		self.sender = sender
		self.clock = clock

	async def _get(self, notification_id: UUID) -> Optional[NotificationMessage]:
		result = await self.session.execute(
			select(NotificationMessage).where(NotificationMessage.id == notification_id)
		)
		return result.scalar_one_or_none()

	async def process(self, notification_id: UUID) -> Optional[NotificationStatus]:
		notification = await self._get(notification_id)
		if notification is None:
			logger.warning(f"Email notification {notification_id} was not found. The job will be skipped.")
			return None

		if notification.status == NotificationStatus.SENT:
			logger.info(f"Email notification {notification_id} is already sent; skipping duplicate processing")
			return notification.status

		notification.attempts += 1
		notification.last_attempt_at = self.clock()

		if notification.attempts > 1:
			email_retried.labels(notification_type=notification.type).inc()
			logger.info(f"Retrying email notification {notification_id} (attempt {notification.attempts})")

		try:
			message = self.composer.compose(notification.type, notification.payload)
		except Exception as e:
			await self._mark_failed(notification, to_safe_error(e))
			logger.exception(f"Failed to compose email template for notification {notification_id}")
			raise NotificationDeliveryError(
				f"Failed to compose email template for notification {notification_id}"
			) from e

		try:
			delivered = await self.sender.send(message)
		except Exception as e:
			await self._mark_failed(notification, to_safe_error(e))
			logger.exception(f"Failed to send email for notification {notification_id}")
			raise NotificationDeliveryError(f"Failed to send email for notification {notification_id}") from e

		if not delivered:
			await self._mark_failed(notification, SENDER_DISABLED_ERROR)
			logger.warning(f"Email sender is disabled; notification {notification_id} was not delivered")
			return notification.status

		notification.status = NotificationStatus.SENT
		notification.sent_at = self.clock()
		notification.last_error = None
		await self.session.commit()
		email_sent.labels(notification_type=notification.type).inc()
		logger.info(f"Email notification {notification_id} sent successfully on attempt {notification.attempts}")
		return notification.status

	async def _mark_failed(self, notification: NotificationMessage, error: str):
		notification.status = NotificationStatus.FAILED
		notification.last_error = error
		await self.session.commit()
		email_failed.labels(notification_type=notification.type).inc()
