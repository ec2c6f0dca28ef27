import logging
from uuid import UUID

from pydantic import ValidationError

from relay.services.outbox_events import EMAIL_NOTIFICATION_SCHEDULED
from relay.services.outbox_handlers import OutboxDeliveryHandler
from relay.services.scheduling import JobScheduler

logger = logging.getLogger(__name__)


class EmailNotificationOutboxDeliveryHandler(OutboxDeliveryHandler):
	"""Hands a scheduled notification to the email job"""

	event_definition = EMAIL_NOTIFICATION_SCHEDULED
	handler_name = "email.notification.enqueue"

	def __init__(self, email_jobs: JobScheduler):
		self.email_jobs = email_jobs

	async def handle(self, event_id: UUID, correlation_id: UUID, payload_json: str):
		try:
			payload = self.event_definition.deserialize(payload_json)
		except ValidationError as e:
			raise ValueError(f"Invalid payload for outbox event {event_id}") from e
		if payload.notification_id.int == 0:
			raise ValueError(f"Invalid payload for outbox event {event_id}")

		self.email_jobs.enqueue(payload.notification_id)
		logger.info(f"Email job enqueued for notification {payload.notification_id} from outbox event {event_id}")
