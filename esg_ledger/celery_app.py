"""
ESG Ledger - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from esg_ledger.config import settings


# Create Celery app
celery_app = Celery(
    'esg_ledger',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['esg_ledger.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=1800,  # chain verification walks the whole log
    task_soft_time_limit=1500,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Beat schedule for periodic tasks
    beat_schedule={
        # Drain the notification queue every minute
        'process-notification-queue': {
            'task': 'esg_ledger.tasks.celery_tasks.process_notification_queue_task',
            'schedule': crontab(),
        },

        # Verify the audit chain every day at 2 AM
        'verify-audit-chain': {
            'task': 'esg_ledger.tasks.celery_tasks.verify_audit_chain_task',
            'schedule': crontab(hour=2, minute=0),
        },
    },
)
