"""
Celery configuration for the earthquake poller and safety-window cleanup
"""
from celery import Celery
from config import Config

ALERTS_QUEUE = 'alerts'
MAINTENANCE_QUEUE = 'maintenance'

celery = Celery(
    'linyone',
    broker=Config.REDIS_URL,
    backend=Config.REDIS_URL,
    include=['tasks']
)

celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    result_expires=60 * 60,
    timezone='Asia/Yangon',
    enable_utc=True,
    # a poll must finish well before the next one is due
    task_time_limit=max(30, int(Config.POLL_INTERVAL_SECONDS * 2)),
    task_soft_time_limit=max(20, int(Config.POLL_INTERVAL_SECONDS * 1.5)),
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery.conf.task_routes = {
    'tasks.poll_earthquakes': {'queue': ALERTS_QUEUE},
    'tasks.broadcast_alert': {'queue': ALERTS_QUEUE},
    'tasks.cleanup_safety_windows': {'queue': MAINTENANCE_QUEUE},
}

celery.conf.beat_schedule = {
    'poll-usgs-earthquakes': {
        'task': 'tasks.poll_earthquakes',
        'schedule': Config.POLL_INTERVAL_SECONDS,
        'options': {'expires': Config.POLL_INTERVAL_SECONDS},
    },
    'cleanup-safety-windows': {
        'task': 'tasks.cleanup_safety_windows',
        'schedule': 60.0,
    },
}
