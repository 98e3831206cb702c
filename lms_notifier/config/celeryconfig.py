from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["lms_notifier.tasks"]

# Timezone Configuration
timezone = settings.TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
# A collection run pays a cool-down per subject, so runs are long.
task_track_started = True
task_time_limit = 4 * 60 * 60
task_soft_time_limit = 4 * 60 * 60 - 300

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 100

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60
task_max_retries = 3

beat_schedule = {
    # Collection over every active subject in the store
    "daily-collection-run": {
        "task": "lms_notifier.tasks.cron.daily_collection.daily_collection_task",
        "schedule": crontab(
            hour=settings.COLLECTION_CRON_HOUR,
            minute=settings.COLLECTION_CRON_MINUTE,
        ),
        "args": ("daily_collection_cron",),
    },
    # Failed notifications go back to pending while attempts remain
    "failed-notification-retry": {
        "task": "lms_notifier.tasks.cron.failed_notification_retry.failed_notification_retry_task",
        "schedule": crontab(minute="*/30"),
        "args": ("failed_notification_retry_cron",),
    },
}

# Default Queue
task_default_queue = "lms_notifier"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
