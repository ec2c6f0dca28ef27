# relay/workers/tasks/email_tasks.py
import logging
from typing import Optional
from uuid import UUID

from relay.core.celery_app import celery_app
from relay.core.container import get_email_job_service
from relay.core.exceptions import NotificationDeliveryError
from relay.database import AsyncSessionLocal
from relay.workers.schedulers import SEND_EMAIL_NOTIFICATION_TASK
from relay.workers.tasks.base import LoggedTask, run_async

logger = logging.getLogger(__name__)


@celery_app.task(
	base=LoggedTask,
	name=SEND_EMAIL_NOTIFICATION_TASK,
	autoretry_for=(NotificationDeliveryError,),
	retry_backoff=30,
	retry_backoff_max=60 * 30,
	max_retries=4,
)
def send_email_notification(notification_id: str) -> Optional[str]:
	"""Compose and send one stored email notification"""

	async def _run():
		async with AsyncSessionLocal() as db:
			status = await get_email_job_service(db).process(UUID(notification_id))
			return status.value if status else None

	return run_async(_run)
