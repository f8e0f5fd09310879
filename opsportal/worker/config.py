"""
Celery configuration settings

This file contains all the Celery configurations including:
- Broker and result backend settings
- Task serialization settings
- The fixed-size export worker pool
- Beat schedule for the pending and stale job sweeps
"""

# Third party imports
from celery.schedules import crontab
from kombu import Queue

# Local imports
from opsportal.core.config import settings

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Export queue: FIFO, one message per job id
task_default_queue = settings.export_queue_name
task_queues = (Queue(settings.export_queue_name),)
task_routes = {
    "exports.process_export_job": {"queue": settings.export_queue_name},
    "exports.dispatch_pending_jobs": {"queue": settings.export_queue_name},
    "exports.fail_stale_jobs": {"queue": settings.export_queue_name},
}

# Task settings
task_track_started = True
task_time_limit = settings.export_job_time_limit
task_soft_time_limit = settings.export_job_time_limit - 5 * 60
task_acks_late = True
task_reject_on_worker_lost = False

# Fixed pool; each worker process holds one job at a time
worker_concurrency = settings.export_worker_pool_size
worker_prefetch_multiplier = 1

# Redis connection settings
broker_connection_retry_on_startup = True
broker_connection_retry = True
broker_connection_max_retries = 10

redis_max_connections = 50
redis_socket_timeout = 10
redis_socket_connect_timeout = 10
redis_retry_on_timeout = True
redis_health_check_interval = 30

broker_transport_options = {
    "max_connections": 20,
    "socket_timeout": 10,
    "socket_connect_timeout": 10,
    "socket_keepalive": True,
    "retry_on_timeout": True,
    "health_check_interval": 30,
}

# Beat schedule configuration
beat_schedule = {
    # Re-send PENDING jobs whose original dispatch never reached the queue
    "exports-dispatch-pending": {
        "task": "exports.dispatch_pending_jobs",
        "schedule": crontab(minute="*/5"),
        "kwargs": {"limit": 100},
    },
    # Fail PROCESSING jobs whose worker died before writing a terminal state
    "exports-fail-stale": {
        "task": "exports.fail_stale_jobs",
        "schedule": crontab(minute="*/15"),
    },
}
