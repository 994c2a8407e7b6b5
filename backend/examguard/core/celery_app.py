from celery import Celery
import logging

from .config import settings

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

celery_app = Celery(
    "examguard_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        'examguard.tasks.notifications',
        'examguard.tasks.maintenance'
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'examguard.tasks.notifications.*': {'queue': 'notifications'},
        'examguard.tasks.maintenance.*': {'queue': 'maintenance'},
    },

    # Tests and single-process setups run tasks inline
    task_always_eager=settings.celery_task_always_eager,
    task_eager_propagates=False,

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    task_soft_time_limit=120,
    task_time_limit=300,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=60,
    task_max_retries=3,

    beat_schedule={
        'expire-stale-attempts': {
            'task': 'expire_stale_attempts',
            'schedule': settings.stale_attempt_sweep_seconds,
        },
    },
)

if __name__ == '__main__':
    celery_app.start()
