"""
Payroll Engine - Celery Configuration

Celery configuration for notification delivery and periodic remittance checks.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from payroll_engine.config import settings


celery_app = Celery(
    'payroll_engine',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['payroll_engine.tasks.celery_tasks'],
)

celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='Africa/Nairobi',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,

    # Worker settings
    worker_prefetch_multiplier=1,

    result_expires=86400,  # 24 hours

    beat_schedule={
        # Flag pending statutory remittances past their due date every day at 8 AM
        'check-overdue-remittances': {
            'task': 'payroll_engine.tasks.celery_tasks.check_overdue_remittances_task',
            'schedule': crontab(hour=8, minute=0),
        },
    },
)


celery_app.conf.task_routes = {
    'payroll_engine.tasks.celery_tasks.deliver_*': {'queue': 'notifications'},
    'payroll_engine.tasks.celery_tasks.*': {'queue': 'default'},
}
