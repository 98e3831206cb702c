from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lms_notifier.config.settings import Settings, settings as default_settings
from lms_notifier.db.store import Store
from lms_notifier.middlewares import RequestIDMiddleware
from lms_notifier.providers.delivery_channel import DeliveryChannel, build_delivery_channel
from lms_notifier.routers import main_router
from lms_notifier.services.dispatch_worker import PeriodicDispatchWorker
from lms_notifier.services.runtime import build_dispatcher, build_store
from lms_notifier.utils.errors import setup_error_handlers
from lms_notifier.utils.logging import get_logger

# Initialize the logger
logger = get_logger()


def create_application(
    settings: Settings = default_settings,
    store: Optional[Store] = None,
    channel: Optional[DeliveryChannel] = None,
    start_dispatch: Optional[bool] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The store, delivery channel, dispatcher and periodic dispatch worker are
    created and torn down by the lifespan, in that order and in reverse.
    """
    start_dispatch = (
        settings.DISPATCH_AUTOSTART if start_dispatch is None else start_dispatch
    )

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info(f"{settings.NAME} is starting up...")
        app_store = (store or build_store(settings)).init()
        app_channel = channel or build_delivery_channel(settings)
        await app_channel.init()

        dispatcher = build_dispatcher(settings, app_store, app_channel)
        worker = PeriodicDispatchWorker(
            dispatcher,
            interval=settings.DISPATCH_INTERVAL_SECONDS,
            drain_timeout=settings.DISPATCH_DRAIN_TIMEOUT_SECONDS,
        )
        application.state.store = app_store
        application.state.channel = app_channel
        application.state.dispatcher = dispatcher
        application.state.dispatch_worker = worker
        if start_dispatch:
            worker.start()

        try:
            yield
        finally:
            logger.info(f"{settings.NAME} is shutting down...")
            await worker.stop()
            await app_channel.shutdown()
            app_store.shutdown()

    application = FastAPI(title=settings.NAME, version=settings.VERSION, lifespan=lifespan)

    # Setup error handlers
    setup_error_handlers(application)

    # Add CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    application.add_middleware(RequestIDMiddleware)

    # Routers
    application.include_router(main_router, prefix=settings.API_PREFIX, tags=["APIs"])

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lms_notifier.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_config=None,
        log_level=None,
    )
