import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery.schedules import crontab
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.config import settings
from relay.core.celery_app import celery_app
from relay.core.container import get_outbox_dispatcher
from relay.database import AsyncSessionLocal
from relay.services.envelope_service import CommandEnvelopeService
from relay.services.outbox_service import OutboxService
from relay.services.scheduling import Clock, JobScheduler, utcnow
from relay.workers.schedulers import CeleryActionMessageScheduler
from relay.workers.tasks.base import run_async

logger = logging.getLogger(__name__)

# Configure periodic tasks
celery_app.conf.beat_schedule = {
	'dispatch-outbox': {
		'task': 'relay.workers.scheduled_tasks.dispatch_outbox',
		'schedule': settings.OUTBOX_POLL_INTERVAL_SECONDS,
	},
	'retry-failed-envelopes': {
		'task': 'relay.workers.scheduled_tasks.retry_failed_envelopes',
		'schedule': settings.DISPATCH_RETRY_SWEEP_SECONDS,
	},
	'cleanup-dispatch-history': {
		'task': 'relay.workers.scheduled_tasks.cleanup_dispatch_history',
		'schedule': crontab(hour=2, minute=0),  # Daily at 2 AM
	},
}


@celery_app.task(name="relay.workers.scheduled_tasks.dispatch_outbox")
def dispatch_outbox():
	"""Fan pending outbox messages out into deliveries"""
	return run_async(_dispatch_outbox_async)


async def _dispatch_outbox_async() -> Dict[str, Any]:
	report = await get_outbox_dispatcher().dispatch_pending()
	return vars(report)


@celery_app.task(name="relay.workers.scheduled_tasks.retry_failed_envelopes")
def retry_failed_envelopes():
	"""Re-enqueue envelopes whose backoff elapsed or whose run was lost"""
	return run_async(retry_due_envelopes)


async def retry_due_envelopes(
		session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
		scheduler: Optional[JobScheduler] = None,
		clock: Clock = utcnow,
		limit: int = 100,
) -> Dict[str, int]:
	scheduler = scheduler or CeleryActionMessageScheduler()

	async with session_factory() as db:
		envelope_ids = await CommandEnvelopeService(db).get_due_for_retry(
			now=clock(),
			processing_timeout=timedelta(seconds=settings.DISPATCH_PROCESSING_TIMEOUT_SECONDS),
			limit=limit,
		)

	for envelope_id in envelope_ids:
		scheduler.enqueue(envelope_id)

	if envelope_ids:
		logger.info(f"Re-enqueued {len(envelope_ids)} command envelopes for retry")
	return {"enqueued": len(envelope_ids)}


@celery_app.task(name="relay.workers.scheduled_tasks.cleanup_dispatch_history")
def cleanup_dispatch_history():
	"""Purge execution logs of completed envelopes and delivered outbox messages past retention"""
	return run_async(cleanup_history)


async def cleanup_history(
		session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
		clock: Clock = utcnow,
		retention_days: int = settings.OUTBOX_RETENTION_DAYS,
) -> Dict[str, int]:
	cutoff_date = clock() - timedelta(days=retention_days)

	async with session_factory() as db:
		execution_logs = await CommandEnvelopeService(db).purge_execution_logs(cutoff_date)
		messages = await OutboxService(db).cleanup_old_items(cutoff_date)

	logger.info(
		f"Purged {execution_logs} execution log rows and {messages} outbox messages older than {cutoff_date}"
	)
	return {"execution_logs": execution_logs, "outbox_messages": messages}
