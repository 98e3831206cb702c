from .background import *
from .cron import *

__all__ = [
    "collection_run_task",
    # Scheduled/Cron Tasks
    "daily_collection_task",
    "failed_notification_retry_task",
]
