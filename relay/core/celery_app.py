# relay/core/celery_app.py
from celery import Celery
from relay.config import settings

celery_app = Celery(
    "relay",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=max(settings.CELERY_TASK_TIME_LIMIT - 60 * 5, 60),
    worker_max_tasks_per_child=100, # recycle to avoid leaks
    worker_prefetch_multiplier=1,
    task_acks_late=True,            # redeliver jobs lost with a crashed worker
    task_reject_on_worker_lost=True,
    result_expires=3600,
    task_track_started=True,
    include=[
        "relay.workers.tasks.dispatch_tasks",
        "relay.workers.tasks.email_tasks",
        "relay.workers.scheduled_tasks",
    ],
)
