from fastapi import Request

from lms_notifier.db.store import Store
from lms_notifier.providers.delivery_channel import DeliveryChannel
from lms_notifier.services.notification_dispatcher import NotificationDispatcher


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_channel(request: Request) -> DeliveryChannel:
    return request.app.state.channel


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
