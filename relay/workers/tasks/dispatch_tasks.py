# relay/workers/tasks/dispatch_tasks.py
import logging
from typing import Optional
from uuid import UUID

from relay.core.celery_app import celery_app
from relay.core.container import get_delivery_processor, get_orchestrator
from relay.workers.schedulers import ORCHESTRATE_ENVELOPE_TASK, PROCESS_OUTBOX_DELIVERY_TASK
from relay.workers.tasks.base import LoggedTask, run_async

logger = logging.getLogger(__name__)


@celery_app.task(base=LoggedTask, name=ORCHESTRATE_ENVELOPE_TASK)
def orchestrate_envelope(envelope_id: str) -> Optional[str]:
	"""Run all handlers for one command envelope"""

	async def _run():
		status = await get_orchestrator().orchestrate(UUID(envelope_id))
		return status.value if status else None

	return run_async(_run)


@celery_app.task(base=LoggedTask, name=PROCESS_OUTBOX_DELIVERY_TASK)
def process_outbox_delivery(delivery_id: str) -> Optional[str]:
	"""Run one outbox delivery through its handler"""

	async def _run():
		status = await get_delivery_processor().process(UUID(delivery_id))
		return status.value if status else None

	return run_async(_run)
