"""Celery-backed schedulers. Only the durable id string crosses the broker."""
import logging
from uuid import UUID

from relay.core.celery_app import celery_app

logger = logging.getLogger(__name__)

ORCHESTRATE_ENVELOPE_TASK = "relay.workers.tasks.dispatch_tasks.orchestrate_envelope"
PROCESS_OUTBOX_DELIVERY_TASK = "relay.workers.tasks.dispatch_tasks.process_outbox_delivery"
SEND_EMAIL_NOTIFICATION_TASK = "relay.workers.tasks.email_tasks.send_email_notification"


class CelerySendTaskScheduler:
	task_name: str

	def enqueue(self, durable_id: UUID) -> None:
		if durable_id is None or durable_id.int == 0:
			raise ValueError("durable_id is required")
		result = celery_app.send_task(self.task_name, args=[str(durable_id)])
		logger.debug(f"Enqueued {self.task_name} for {durable_id} as task {result.id}")


class CeleryActionMessageScheduler(CelerySendTaskScheduler):
	task_name = ORCHESTRATE_ENVELOPE_TASK


class CeleryOutboxDeliveryScheduler(CelerySendTaskScheduler):
	task_name = PROCESS_OUTBOX_DELIVERY_TASK


class CeleryEmailJobScheduler(CelerySendTaskScheduler):
	task_name = SEND_EMAIL_NOTIFICATION_TASK
