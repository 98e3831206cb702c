from .daily_collection import daily_collection_task
from .failed_notification_retry import failed_notification_retry_task

__all__ = [
    "daily_collection_task",
    "failed_notification_retry_task",
]
