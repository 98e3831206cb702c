from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from lms_notifier.config.settings import Settings
from lms_notifier.db.store import Store
from lms_notifier.providers.delivery_channel import DeliveryChannel, build_delivery_channel
from lms_notifier.providers.extraction import ExtractionProvider, load_extraction_provider
from lms_notifier.services.message_formatter import MessageFormatter
from lms_notifier.services.notification_dispatcher import NotificationDispatcher
from lms_notifier.services.orchestrator import CollectionOrchestrator
from lms_notifier.utils.logging import get_logger

logger = get_logger()


@dataclass
class Resources:
    store: Store
    channel: DeliveryChannel


def build_store(settings: Settings) -> Store:
    options = {}
    if not settings.DATABASE_URL.startswith("sqlite"):
        options["pool_timeout"] = settings.DATABASE_POOL_TIMEOUT
    return Store(
        settings.DATABASE_URL,
        create_tables=settings.DATABASE_AUTO_CREATE,
        **options,
    )


def build_formatter(settings: Settings) -> MessageFormatter:
    return MessageFormatter(timezone=settings.TIMEZONE, footer=settings.NAME)


def build_dispatcher(
    settings: Settings, store: Store, channel: DeliveryChannel
) -> NotificationDispatcher:
    return NotificationDispatcher(
        store,
        channel,
        formatter=build_formatter(settings),
        batch_size=settings.DISPATCH_BATCH_SIZE,
        message_delay=settings.DISPATCH_MESSAGE_DELAY_SECONDS,
        max_attempts=settings.DISPATCH_MAX_ATTEMPTS,
        send_timeout=settings.DISPATCH_SEND_TIMEOUT_SECONDS,
    )


def build_orchestrator(
    settings: Settings,
    store: Store,
    channel: DeliveryChannel,
    provider: Optional[ExtractionProvider] = None,
) -> CollectionOrchestrator:
    return CollectionOrchestrator(
        store,
        channel,
        provider or load_extraction_provider(settings.EXTRACTION_PROVIDER),
        formatter=build_formatter(settings),
        cooldown=settings.COLLECTION_COOLDOWN_SECONDS,
        stage_timeout=settings.COLLECTION_STAGE_TIMEOUT_SECONDS,
        horizon_days=settings.COLLECTION_HORIZON_DAYS,
        recheck_wait=settings.CHANNEL_RECHECK_SECONDS,
        message_delay=settings.DISPATCH_MESSAGE_DELAY_SECONDS,
        send_timeout=settings.DISPATCH_SEND_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncIterator[Store]:
    """Initialise the store alone, for work that never touches the channel."""
    store = build_store(settings).init()
    try:
        yield store
    finally:
        store.shutdown()


@asynccontextmanager
async def open_resources(settings: Settings) -> AsyncIterator[Resources]:
    """
    Initialise the store and delivery channel, releasing both on exit.

    Initialisation failures raise FatalResourceError.
    """
    store = build_store(settings).init()
    channel = build_delivery_channel(settings)
    try:
        await channel.init()
        yield Resources(store=store, channel=channel)
    finally:
        await channel.shutdown()
        store.shutdown()
