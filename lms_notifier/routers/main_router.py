from fastapi import APIRouter

from .channel import channel_router
from .collection import collection_router
from .health import health_router
from .notifications import notifications_router

main_router = APIRouter()
main_router.include_router(health_router, prefix="/health", tags=["Health"])
main_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
main_router.include_router(channel_router, prefix="/channel", tags=["Delivery Channel"])
main_router.include_router(collection_router, prefix="/collection", tags=["Collection"])
