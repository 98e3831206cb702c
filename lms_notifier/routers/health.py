from fastapi import APIRouter, Request

from lms_notifier.config.settings import settings
from lms_notifier.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
async def health_check(request: Request):
    """Liveness check with dispatcher state."""
    worker = getattr(request.app.state, "dispatch_worker", None)
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "periodicDispatch": bool(worker and worker.is_running),
        },
        message="Service is running",
    )
