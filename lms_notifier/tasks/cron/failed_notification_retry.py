import asyncio

from lms_notifier.celery import celery
from lms_notifier.config.settings import settings
from lms_notifier.services.notification_dispatcher import retry_failed_notifications
from lms_notifier.services.runtime import open_store
from lms_notifier.utils.context import request_scope
from lms_notifier.utils.datetime_utils import naive_utc_now
from lms_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def failed_notification_retry_task(self, request_id: str):
    """
    Put failed notifications that still have attempts left back to pending.

    The next dispatch cycle in the API process picks them up. The sweep only
    opens the store, so it runs even while the delivery channel is down.

    Args:
        request_id: Request ID for tracking purposes (set by the beat schedule)
    """
    try:
        return asyncio.run(_async_failed_notification_retry(request_id))
    except Exception as e:
        get_logger().bind(request_id=request_id).error(
            f"Failed notification retry task exception: {str(e)}"
        )
        if self.request.retries < self.max_retries:
            raise self.retry(countdown=min(2**self.request.retries * 60, 600))
        return {"success": False, "error": str(e), "request_id": request_id}


async def _async_failed_notification_retry(request_id: str):
    with request_scope(request_id):
        async with open_store(settings) as store:
            retried = retry_failed_notifications(
                store, settings.DISPATCH_MAX_ATTEMPTS, naive_utc_now()
            )

        return {"success": True, "retried": retried, "request_id": request_id}
