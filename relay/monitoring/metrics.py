from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter
from fastapi.responses import Response
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

# Define metrics
commands_dispatched = Counter(
	'commands_dispatched_total',
	'Commands passed to the dispatcher',
	['outcome']
)

handler_executions = Counter(
	'handler_executions_total',
	'Command handler executions',
	['handler', 'outcome']
)

envelopes_finalized = Counter(
	'envelopes_finalized_total',
	'Command envelopes leaving the processing state',
	['status']
)

outbox_messages_dispatched = Counter(
	'outbox_messages_dispatched_total',
	'Outbox messages handled by the dispatcher',
	['status']
)

outbox_deliveries = Counter(
	'outbox_deliveries_total',
	'Outbox delivery outcomes',
	['handler', 'status']
)

email_enqueued = Counter(
	'email_enqueued_total',
	'Email notifications scheduled',
	['notification_type']
)

email_sent = Counter(
	'email_sent_total',
	'Email notifications sent',
	['notification_type']
)

email_failed = Counter(
	'email_failed_total',
	'Email notifications that failed to send',
	['notification_type']
)

email_retried = Counter(
	'email_retried_total',
	'Failed email notifications re-published',
	['notification_type']
)

request_count = Counter(
	'http_requests_total',
	'Total HTTP requests',
	['method', 'endpoint', 'status']
)

request_duration = Histogram(
	'http_request_duration_seconds',
	'HTTP request duration',
	['method', 'endpoint'],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

active_requests = Gauge(
	'http_requests_active',
	'Number of active HTTP requests'
)

task_queue_size = Gauge(
	'celery_task_queue_size',
	'Size of Celery task queue',
	['queue_name']
)


@router.get("/metrics")
async def metrics():
	"""Prometheus metrics endpoint"""
	# Update dynamic metrics
	try:
		from relay.core.celery_app import celery_app
		inspector = celery_app.control.inspect(timeout=1.0)
		reserved = inspector.reserved() or {}
		task_queue_size.labels(queue_name='default').set(
			sum(len(tasks) for tasks in reserved.values())
		)
	except Exception as e:
		logger.debug(f"Could not inspect celery workers: {e}")

	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
