from typing import Annotated

from fastapi import APIRouter, Depends, Request

from lms_notifier.providers.delivery_channel import (
    STATUS_MESSAGES,
    ChannelStatus,
    DeliveryChannel,
)
from lms_notifier.routers.dependencies import get_channel
from lms_notifier.schemas.channel_schemas import ChannelStatusRead
from lms_notifier.utils.responses import ResponseBuilder

channel_router = APIRouter()


@channel_router.get("/status")
async def get_channel_status(
    request: Request,
    channel: Annotated[DeliveryChannel, Depends(get_channel)],
):
    status = await channel.status()
    data = ChannelStatusRead(
        status=status,
        is_ready=status == ChannelStatus.READY,
        message=STATUS_MESSAGES[status],
    )
    return ResponseBuilder.success(
        request=request,
        data=data.model_dump(by_alias=True),
        message=data.message,
    )
