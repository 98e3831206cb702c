from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request

from lms_notifier.db.models import NotificationStatus
from lms_notifier.routers.dependencies import get_dispatcher
from lms_notifier.schemas.notification_schemas import RetryResult
from lms_notifier.services.notification_dispatcher import NotificationDispatcher
from lms_notifier.utils.logging import get_logger
from lms_notifier.utils.responses import ResponseBuilder

notifications_router = APIRouter()
logger = get_logger()


@notifications_router.post("/process")
async def process_notifications(
    request: Request,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
):
    """
    Run one dispatch cycle now.

    Returns zero counts when a cycle is already running or the delivery
    channel is not ready.
    """
    result = await dispatcher.process_now()
    return ResponseBuilder.success(
        request=request,
        data=result.model_dump(by_alias=True),
        message=f"Processed {result.processed} notifications: {result.sent} sent, {result.failed} failed",
    )


@notifications_router.get("/stats")
async def get_queue_stats(
    request: Request,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
):
    stats = await dispatcher.queue_stats()
    return ResponseBuilder.success(
        request=request,
        data=stats.model_dump(by_alias=True),
        message="Notification queue statistics",
    )


@notifications_router.post("/retry")
async def retry_failed_notifications(
    request: Request,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
):
    retried = await dispatcher.retry_failed()
    return ResponseBuilder.success(
        request=request,
        data=RetryResult(retried=retried).model_dump(by_alias=True),
        message=f"Reset {retried} failed notifications to pending",
    )


@notifications_router.get("")
async def list_notifications(
    request: Request,
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
    status: Optional[NotificationStatus] = Query(
        default=None, description="Only notifications with this status"
    ),
    limit: int = Query(default=50, ge=1, le=200),
):
    notifications = await dispatcher.list_notifications(status=status, limit=limit)
    return ResponseBuilder.success(
        request=request,
        data=[n.model_dump(by_alias=True) for n in notifications],
        message=f"Retrieved {len(notifications)} notifications",
    )
